"""
Product Mapper: Supplier File Conversion Engine.

Reads product-supplier files with inconsistent layouts and free-text
descriptions and converts them into normalised, typed product records.

Columns are mapped by a declarative layout, descriptions are parsed by
priority-ordered rules and keyword dictionaries, and low-confidence fields
are handed to a pluggable resolver whose accepted answers are learned for
future rows.
"""

__version__ = "1.0.0"
__author__ = "Product Mapper Team"

from product_mapper.pipeline import ProductConversionPipeline  # noqa: F401
