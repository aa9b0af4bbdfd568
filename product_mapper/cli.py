"""
Command-line interface for the product conversion pipeline.

Converts one supplier file and writes the result to stdout (or ``--output``)
as JSON or CSV. Logs go to stderr.

Exit codes: 0 on success (row errors included), 2 on configuration or read
errors.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from product_mapper.config import LearningConfig, PipelineConfig
from product_mapper.errors import ConfigurationError, ExternalReadError
from product_mapper.file_config import FileConfiguration, load_file_configuration
from product_mapper.logging_setup import configure_logging, get_logger
from product_mapper.pipeline import ProductConversionPipeline
from product_mapper.resolver import AutoDefaultResolver, ConsoleAmbiguityResolver
from product_mapper.serializers import errors_to_csv, records_to_csv, to_json

logger = get_logger("cli")

EXIT_OK = 0
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="product-mapper",
        description="Convert a supplier product file into normalised product records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default 13-column layout, JSON to stdout
  python -m product_mapper.cli supplier.xlsx

  # Custom layout and dictionaries, CSV of valid records
  python -m product_mapper.cli supplier.csv --layout layout.json \\
      --parser-config parser.json --format csv --output records.csv

  # Ask about uncertain fields and remember the answers
  python -m product_mapper.cli supplier.csv --interactive --knowledge kb.json
        """,
    )
    parser.add_argument("file", help="Supplier file (.csv, .tsv, .txt, .xlsx, .xlsm)")
    parser.add_argument(
        "--layout", "-l",
        default=None,
        help="File layout JSON (default: the built-in 13-column layout)",
    )
    parser.add_argument(
        "--parser-config", "-p",
        default=None,
        help="Dictionaries / rules / ignore patterns JSON",
    )
    parser.add_argument(
        "--knowledge", "-k",
        default=None,
        help="Knowledge store JSON; loaded when present and updated on learning",
    )
    parser.add_argument(
        "--format", "-f",
        choices=["json", "csv"],
        default="json",
        help="Output format (default: json)",
    )
    parser.add_argument(
        "--errors-csv",
        default=None,
        help="Also write per-row diagnostics as CSV to this path",
    )
    parser.add_argument("--output", "-o", default=None, help="Write output here instead of stdout")
    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Ask on the terminal about low-confidence fields",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    level = getattr(logging, args.log_level)
    configure_logging(level=level)
    logging.getLogger("product_mapper").setLevel(level)

    config = PipelineConfig(
        learning=LearningConfig(
            knowledge_path=Path(args.knowledge) if args.knowledge else None
        ),
        log_level=level,
        parser_config_path=Path(args.parser_config) if args.parser_config else None,
    )
    resolver = (
        ConsoleAmbiguityResolver(output_fn=lambda line: print(line, file=sys.stderr))
        if args.interactive
        else AutoDefaultResolver()
    )

    try:
        layout = (
            load_file_configuration(args.layout)
            if args.layout
            else FileConfiguration.create_default()
        )
        pipeline = ProductConversionPipeline(config, resolver=resolver)
        result = pipeline.convert_file(args.file, layout)
    except (ConfigurationError, ExternalReadError) as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    text = records_to_csv(result) if args.format == "csv" else to_json(result)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        logger.info("Wrote %s output to %s", args.format, args.output)
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")

    if args.errors_csv:
        Path(args.errors_csv).write_text(errors_to_csv(result), encoding="utf-8")

    print(result.summary(), file=sys.stderr)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
