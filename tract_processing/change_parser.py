"""
change_parser.py

Turns raw boundary-change register rows into typed ChangeEvent records.

The register lists one row per changed section: the district and section
codes of the unit, the section it came from (origin) or went into
(destination), and the years the unit entered and left the register. Codes
arrive as loosely typed strings or numbers and are zero-padded here.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from loguru import logger

from .data_utils import (
    SUBREGION_WIDTH,
    UNIT_CODE_WIDTH,
    compose_unit_code,
    pad_code,
    validate_required_columns,
)
from .errors import MalformedChangeEvent
from .models import ChangeEvent

OPEN_START_YEAR = 0
OPEN_END_YEAR = 9999

DEFAULT_COLUMNS = {
    "district": "district",
    "section": "section",
    "origin": "origin",
    "destination": "destination",
    "entry_year": "entry_year",
    "exit_year": "exit_year",
}


class UnitChangeParser:
    """Parse change-register rows into :class:`ChangeEvent` objects.

    Example:
        parser = UnitChangeParser()
        events = parser.parse_frame(pd.read_csv("changes.csv", dtype=str))
    """

    def __init__(self, columns: Optional[Mapping[str, str]] = None):
        self.columns: Dict[str, str] = {**DEFAULT_COLUMNS, **(columns or {})}

    def parse_record(self, record: Mapping[str, Any]) -> ChangeEvent:
        cols = self.columns
        district = record.get(cols["district"])
        unit_code = compose_unit_code(district, record.get(cols["section"]))
        if unit_code is None:
            raise MalformedChangeEvent(f"Change record without a unit code: {dict(record)}")

        origin = self._related_code(district, record.get(cols["origin"]))
        destination = self._related_code(district, record.get(cols["destination"]))
        if (origin is None) == (destination is None):
            state = "both" if origin is not None else "neither"
            raise MalformedChangeEvent(
                f"Change record has {state} origin and destination", [unit_code]
            )

        return ChangeEvent(
            unit_code=unit_code,
            origin_code=origin,
            destination_code=destination,
            entry_year=self._parse_year(record.get(cols["entry_year"]), OPEN_START_YEAR, unit_code),
            exit_year=self._parse_year(record.get(cols["exit_year"]), OPEN_END_YEAR, unit_code),
        )

    def parse_records(self, records: Iterable[Mapping[str, Any]]) -> List[ChangeEvent]:
        events = [self.parse_record(record) for record in records]
        logger.debug(f"  📋 Parsed {len(events):,} change events")
        return events

    def parse_frame(self, df: pd.DataFrame) -> List[ChangeEvent]:
        validate_required_columns(
            df, [self.columns["district"], self.columns["section"]], "Change register"
        )
        # Optional columns may be absent from registers that only record one direction
        df = df.copy()
        for key in ("origin", "destination", "entry_year", "exit_year"):
            if self.columns[key] not in df.columns:
                df[self.columns[key]] = None
        return self.parse_records(df.to_dict(orient="records"))

    @staticmethod
    def _related_code(district: Any, code: Any) -> Optional[str]:
        text = pad_code(code, SUBREGION_WIDTH)
        if text is None:
            return None
        if len(text) == SUBREGION_WIDTH:
            return compose_unit_code(district, text)
        if len(text) > UNIT_CODE_WIDTH:
            raise MalformedChangeEvent(f"Related code '{code}' is wider than a unit code", [text])
        return pad_code(text, UNIT_CODE_WIDTH)

    @staticmethod
    def _parse_year(value: Any, default: int, unit_code: str) -> int:
        if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
            return default
        text = str(value).strip()
        if not text:
            return default
        match = re.fullmatch(r"(\d{1,4})(?:\.0+)?", text)
        if not match:
            raise MalformedChangeEvent(f"Unparseable year '{value}'", [unit_code])
        return int(match.group(1))
