"""
Conversion Orchestrator.

The central entry point that wires together every layer:

    Tabular Reader  →  Column Mapping + Field Normalizer
                    →  Extraction Engine (description columns)
                    →  Ambiguity Resolver  →  Validator  →  ConversionResult

Usage
-----
>>> from product_mapper.pipeline import ProductConversionPipeline
>>> from product_mapper.file_config import FileConfiguration
>>>
>>> pipe = ProductConversionPipeline()
>>> result = pipe.convert_file("supplier.xlsx", FileConfiguration.create_default())
>>> print(result.summary())
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, List, Optional, Set, Union

from product_mapper.config import PipelineConfig
from product_mapper.dictionaries import (
    ParserConfiguration,
    ParsingRule,
    load_parser_configuration,
)
from product_mapper.errors import AmbiguityUnresolved, RowParseError
from product_mapper.extraction import ExtractionEngine, ExtractionResult
from product_mapper.file_config import FileConfiguration
from product_mapper.fuzzy_matcher import CandidateRanker
from product_mapper.knowledge import KnowledgeStore
from product_mapper.logging_setup import configure_logging, get_logger
from product_mapper.normalizer import FieldNormalizer
from product_mapper.reader import Grid, Source, TabularReader
from product_mapper.resolver import (
    AmbiguityContext,
    AmbiguityResolver,
    AutoDefaultResolver,
    SizeInfo,
    build_candidates,
    decode_action,
)
from product_mapper.schema import (
    VARIANT_TYPES,
    ConversionResult,
    FieldType,
    Record,
    RowError,
)
from product_mapper.validator import RecordValidator

logger = get_logger("pipeline")


class ProductConversionPipeline:
    """Orchestrates the full supplier-file conversion.

    Parameters
    ----------
    config:
        All tuneable knobs. Defaults suit most supplier files.
    parser_config:
        Dictionaries, rules and ignore patterns. When omitted it is loaded
        from ``config.parser_config_path`` or built from the defaults.
    knowledge:
        Learning store. When omitted one is created from ``config.learning``.
    resolver:
        Strategy for low-confidence fields. ``AutoDefaultResolver`` when
        omitted, so batch runs never block.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        parser_config: Optional[ParserConfiguration] = None,
        knowledge: Optional[KnowledgeStore] = None,
        resolver: Optional[AmbiguityResolver] = None,
    ) -> None:
        self._config = config or PipelineConfig()

        # Bootstrap logging before anything else
        configure_logging(level=self._config.log_level, log_file=self._config.log_file)

        if parser_config is None:
            if self._config.parser_config_path:
                parser_config = load_parser_configuration(self._config.parser_config_path)
            else:
                parser_config = ParserConfiguration.create_default()
        self._parser_config = parser_config

        self._knowledge = knowledge if knowledge is not None else KnowledgeStore(
            self._config.learning
        )
        self._resolver = resolver or AutoDefaultResolver()
        self._resolver.attach_knowledge_store(self._knowledge)

        # Construct layers; all share the same parser configuration object
        self._reader = TabularReader()
        self._normalizer = FieldNormalizer(self._parser_config)
        self._engine = ExtractionEngine(
            self._parser_config, self._knowledge, self._config.extraction
        )
        self._validator = RecordValidator(self._config.validation)
        self._ranker = CandidateRanker()

        logger.info(
            "Pipeline initialised: rules=%d, ignore_patterns=%d, knowledge=%d, "
            "resolver=%s",
            len(self._parser_config.rules),
            len(self._parser_config.ignore_patterns),
            len(self._knowledge),
            type(self._resolver).__name__,
        )

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def convert_file(
        self,
        source: Source,
        file_config: FileConfiguration,
        cancel_event: Optional[threading.Event] = None,
        extension: Optional[str] = None,
    ) -> ConversionResult:
        """Read and convert one supplier file.

        The layout is validated before the file is opened.

        Raises
        ------
        ConfigurationError
            The layout is invalid.
        ExternalReadError
            The file cannot be read.
        """
        file_config.validate()
        grid = self._reader.read(source, extension=extension)
        return self.convert_grid(grid, file_config, cancel_event)

    def convert_dataframe(
        self,
        df: Any,
        file_config: FileConfiguration,
        cancel_event: Optional[threading.Event] = None,
    ) -> ConversionResult:
        """Convert a pandas DataFrame; its column labels become row 0."""
        file_config.validate()
        grid = TabularReader.from_dataframe(df)
        return self.convert_grid(grid, file_config, cancel_event)

    def convert_grid(
        self,
        grid: Grid,
        file_config: FileConfiguration,
        cancel_event: Optional[threading.Event] = None,
    ) -> ConversionResult:
        """Convert rows ``start_row..end_row`` of *grid*.

        Row-level failures are collected in ``ConversionResult.errors`` and
        never stop the batch. Setting *cancel_event* stops processing before
        the next row and returns what has been converted so far.
        """
        file_config.validate()

        result = ConversionResult()
        last = grid.row_count - 1
        if file_config.end_row is not None:
            last = min(last, file_config.end_row)
        keywords = self._title_keywords(grid, file_config)

        logger.info(
            "Converting %s with layout %r: rows %d..%d",
            grid.source_name or "<grid>",
            file_config.format_name,
            file_config.start_row,
            last,
        )

        for index in range(file_config.start_row, last + 1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.warning("Conversion cancelled before row %d", index + 1)
                break

            result.total_processed += 1
            row = grid.row(index)
            raw_line = grid.raw_line(index)
            row_number = index + 1

            if file_config.has_inner_titles and self._is_title_row(
                row, keywords, file_config.inner_title_threshold
            ):
                result.skipped_rows += 1
                logger.debug("Row %d skipped as inner title: %r", row_number, raw_line)
                continue

            try:
                self._convert_row(row, row_number, raw_line, file_config, result)
            except RowParseError as exc:
                self._add_error(
                    result,
                    RowError(exc.row_number, exc.field, exc.value, exc.message,
                             exc.raw_line or raw_line),
                )
            except Exception as exc:  # noqa: BLE001 - one bad row never aborts the batch
                logger.exception("Unexpected failure in row %d", row_number)
                self._add_error(
                    result, RowError(row_number, "", "", f"Error processing row: {exc}", raw_line)
                )

        logger.info("Conversion complete: %s", result.summary())
        return result

    def parse_description(self, text: str) -> ExtractionResult:
        """Run the extraction engine on a single free-text description."""
        return self._engine.extract(text)

    # ------------------------------------------------------------------ #
    # Row processing
    # ------------------------------------------------------------------ #

    def _convert_row(
        self,
        row: List[str],
        row_number: int,
        raw_line: str,
        file_config: FileConfiguration,
        result: ConversionResult,
    ) -> None:
        if not any(cell.strip() for cell in row):
            raise RowParseError("Empty row", row_number, raw_line=raw_line)

        if len(row) < file_config.min_columns:
            raise RowParseError(
                f"Expected at least {file_config.min_columns} columns, found {len(row)}",
                row_number,
                value=str(len(row)),
                raw_line=raw_line,
            )

        record = Record()
        applied: List[str] = []
        descriptions: List[str] = []

        # --- Step 1: mapped columns -----------------------------------
        for column, cell in enumerate(row):
            if file_config.is_ignored(column) or not cell.strip():
                continue
            target = file_config.field_for(column)
            if target is not FieldType.IGNORE:
                self._apply_column(record, target, cell, descriptions, applied)

        # --- Step 2: description columns ------------------------------
        for column in sorted(file_config.description_columns):
            if column < len(row) and file_config.is_description(column):
                if row[column].strip():
                    descriptions.append(row[column].strip())

        text = " ".join(descriptions)
        if text:
            locked = [f for f in FieldType if record.is_set(f)]
            extraction = self._engine.extract(text, locked=locked)
            applied.extend(extraction.applied_knowledge)
            written = extraction.apply_to(record)
            logger.debug(
                "Row %d: extracted %s from %r",
                row_number,
                [f.value for f in written],
                text,
            )

            # --- Step 3: ambiguity ------------------------------------
            self._resolve_ambiguities(
                record, extraction, row_number, text, raw_line, result, applied
            )

        record.original_source = raw_line

        # --- Step 4: completeness and validation ----------------------
        if not record.is_complete:
            # records without code or name are dropped, not reported
            result.dropped_records += 1
            logger.debug("Row %d dropped: code or name missing", row_number)
            self._record_outcome(applied, False)
            return

        report = self._validator.validate(record)
        for warning in report.warnings:
            record.add_remark(warning)
        if not report.is_valid:
            values = record.to_dict()
            for field_name, message in report.errors:
                self._add_error(
                    result,
                    RowError(row_number, field_name, str(values.get(field_name, "")),
                             message, raw_line),
                )
            self._record_outcome(applied, False)
            return

        result.valid_records.append(record)
        self._record_outcome(applied, True)

    def _apply_column(
        self,
        record: Record,
        target: FieldType,
        cell: str,
        descriptions: List[str],
        applied: List[str],
    ) -> None:
        """Normalise one mapped cell onto *record*."""
        if target is FieldType.CODE:
            code, rest = self._normalizer.split_code(cell)
            if rest:
                descriptions.append(rest)
            record.assign(target, code, 1.0)
            return

        value, warnings = self._normalizer.normalize_field(target, cell)
        for warning in warnings:
            logger.debug("Column %s: %s", target.value, warning)

        enum_cls = VARIANT_TYPES.get(target)
        if enum_cls is not None:
            defaulted = value is enum_cls["UNKNOWN"]  # type: ignore[misc]
        else:
            # a size cell without a number ("N/A", "TBD") only yields the default
            defaulted = target is FieldType.SIZE and bool(warnings)

        if defaulted:
            wanted = {target, FieldType.UNIT} if target is FieldType.SIZE else {target}
            fallback = self._engine.extract(cell, only_fields=wanted)
            applied.extend(fallback.applied_knowledge)
            found = fallback.fields.get(target)
            if found is None or found.source == "unresolved":
                # left unset so description text may still fill it
                return
            record.assign(target, found.value, found.confidence)
            unit = fallback.fields.get(FieldType.UNIT)
            if target is FieldType.SIZE and unit is not None:
                record.assign(FieldType.UNIT, unit.value, unit.confidence)
            return

        record.assign(target, value, 1.0)

        if target is FieldType.SIZE and self._normalizer.has_unit_marker(cell):
            unit, _ = self._normalizer.infer_unit(cell)
            record.assign(FieldType.UNIT, unit, 1.0)
        elif target is FieldType.BRAND and record.brand_id is None:
            record.brand_id = self._parser_config.brands.lookup(value)

    def _resolve_ambiguities(
        self,
        record: Record,
        extraction: ExtractionResult,
        row_number: int,
        text: str,
        raw_line: str,
        result: ConversionResult,
        applied: List[str],
    ) -> None:
        threshold = self._config.extraction.ambiguity_threshold
        high = self._config.extraction.high_confidence

        for target in extraction.low_confidence:
            if record.is_set(target) and record.field_confidence.get(target.value, 0.0) >= threshold:
                continue

            found = extraction.fields.get(target)
            context = AmbiguityContext(
                row_number=row_number,
                original_text=text,
                field=target,
                record=record,
                confidence=found.confidence if found is not None else 0.0,
                raw_row=raw_line,
                token=found.token if found is not None else "",
            )

            # a learned correction keyed on this text settles it without asking
            hit = self._knowledge.best_action(target.value, context.learn_key)
            if hit is not None:
                entry, action = hit
                value = decode_action(target, action)
                if value is not None:
                    self._apply_choice(record, target, value, high)
                    applied.append(entry.id)
                    logger.info(
                        "Row %d: learned %s %r -> %r",
                        row_number, target.value, context.learn_key, action,
                    )
                    continue

            candidates = build_candidates(
                target, context.token, text, self._parser_config, self._ranker
            )
            try:
                chosen = self._resolver.resolve(context, candidates)
                if chosen is None:
                    raise AmbiguityUnresolved(target.value, row_number)
            except AmbiguityUnresolved as exc:
                record.add_remark(str(exc))
                logger.debug("%s", exc)
                continue

            self._apply_choice(record, target, chosen.value, high)
            result.interactive_decisions += 1
            if self._resolver.record_decision(context, chosen) is not None:
                result.learned_examples += 1

    def _apply_choice(
        self, record: Record, target: FieldType, value: Any, confidence: float
    ) -> None:
        if isinstance(value, SizeInfo):
            record.assign(FieldType.SIZE, value.size, confidence)
            record.assign(FieldType.UNIT, value.unit, confidence)
            return
        record.assign(target, value, confidence)
        if target is FieldType.BRAND:
            record.brand_id = self._parser_config.brands.lookup(str(value))

    def _record_outcome(self, entry_ids: List[str], was_successful: bool) -> None:
        """Feed the row's outcome back into every knowledge entry it used."""
        for entry_id in dict.fromkeys(entry_ids):
            self._knowledge.update_success_rate(entry_id, was_successful)

    # ------------------------------------------------------------------ #
    # Inner title heuristic
    # ------------------------------------------------------------------ #

    @staticmethod
    def _title_keywords(grid: Grid, file_config: FileConfiguration) -> List[str]:
        source = file_config.header_keywords or grid.header(file_config.header_row)
        return [k.strip().lower() for k in source if k and k.strip()]

    @staticmethod
    def _is_title_row(row: List[str], keywords: List[str], threshold: int) -> bool:
        if not keywords:
            return False
        cells = [c.strip().lower() for c in row if c.strip()]
        hits: Set[str] = {k for k in keywords if any(k in c for c in cells)}
        return len(hits) >= threshold

    @staticmethod
    def _add_error(result: ConversionResult, error: RowError) -> None:
        result.errors.append(error)
        logger.warning("Row %d: %s", error.row_number, error.message)

    # ------------------------------------------------------------------ #
    # Runtime configuration
    # ------------------------------------------------------------------ #

    def add_dictionary_entry(self, target: FieldType, keyword: str, value: Any) -> None:
        """Hot-add a keyword mapping after pipeline construction."""
        self._parser_config.add_mapping(target, keyword, value)

    def add_parsing_rule(self, rule: ParsingRule) -> None:
        self._parser_config.add_rule(rule)

    def add_ignore_pattern(self, pattern: str) -> None:
        self._parser_config.add_ignore_pattern(pattern)

    def save_knowledge(self, path: Optional[Union[str, Path]] = None) -> None:
        self._knowledge.save(path)

    @property
    def parser_config(self) -> ParserConfiguration:
        return self._parser_config

    @property
    def knowledge(self) -> KnowledgeStore:
        return self._knowledge

    @property
    def resolver(self) -> AmbiguityResolver:
        return self._resolver
