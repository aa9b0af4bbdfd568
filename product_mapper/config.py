"""
Configuration module for Product Mapper.

All tuneable parameters (confidence levels, thresholds, learning deltas,
paths) live here. Business logic modules read them from these frozen
dataclasses instead of hard-coding numbers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


@dataclass(frozen=True)
class ExtractionConfig:
    """Controls confidence scoring in the extraction engine."""

    # Direct dictionary or learned-knowledge hit
    high_confidence: float = 0.9

    # A regex match whose raw token was used without dictionary backing
    medium_confidence: float = 0.6

    # Unresolved default
    low_confidence: float = 0.3

    # Fields scored below this value are handed to the ambiguity resolver
    ambiguity_threshold: float = 0.5

    # Fields every description is expected to yield; when still unset after
    # extraction they are reported as low confidence.
    expected_fields: Tuple[str, ...] = ("concentration", "size")


@dataclass(frozen=True)
class LearningConfig:
    """Controls the knowledge / learning store."""

    # Added to an existing entry's confidence on every repeated correction
    reinforcement_delta: float = 0.1

    # Maximum Levenshtein distance for a learned pattern to still apply
    max_edit_distance: int = 2

    # Confidence given to a freshly learned correction
    correction_confidence: float = 0.8

    # Author recorded on automatically learned entries
    default_author: str = "system"

    # When set, the store is loaded from and saved to this JSON file
    knowledge_path: Optional[Path] = None


@dataclass(frozen=True)
class ValidationConfig:
    """Controls the record validation layer."""

    max_code_length: int = 100
    max_name_length: int = 200

    # When True a record with size 0 is reported as an error
    require_positive_size: bool = False


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration aggregating all sub-configs."""

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    # Logging level for the conversion audit trail
    log_level: int = logging.INFO

    # Optional log file written alongside the console handler
    log_file: Optional[str] = None

    # Optional path to a parser configuration JSON file (dictionaries, rules,
    # ignore patterns). The built-in defaults are used when unset.
    parser_config_path: Optional[Path] = None
