"""
data_utils.py - Shared Tabular Utilities

Column cleaning, identifier normalisation and the small value-selection
helpers used by the reconciliation and aggregation stages.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from loguru import logger

from .errors import MalformedChangeEvent
from .models import MISSING

REGION_WIDTH = 2
SUBREGION_WIDTH = 3
UNIT_CODE_WIDTH = REGION_WIDTH + SUBREGION_WIDTH


def category_slug(label: Any) -> str:
    """Turn a free-text category label into a snake_case column suffix.

    Labels that differ only in case or punctuation ("Bus Stop", "bus-stop")
    share one slug. Blank and missing labels become "unknown".
    """
    if label is None or (pd.api.types.is_scalar(label) and pd.isna(label)):
        return "unknown"
    slug = str(label).strip()
    slug = re.sub(r"[^\w\s]", "_", slug)
    slug = re.sub(r"\s+", "_", slug)
    slug = re.sub(r"_+", "_", slug.lower()).strip("_")
    return slug or "unknown"


def validate_required_columns(df: pd.DataFrame, required: Iterable[str], context: str) -> None:
    """Raise ``KeyError`` naming every required column missing from ``df``."""
    missing_columns = [col for col in required if col not in df.columns]
    if missing_columns:
        logger.error(f"❌ {context}: missing required columns {missing_columns}")
        logger.info(f"Available columns: {list(df.columns)}")
        raise KeyError(f"{context}: missing required columns {missing_columns}")


def pad_code(value: Any, width: int) -> Optional[str]:
    """Zero-pad a region/sub-region code. Blank and NaN inputs give None."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    if not text or text.lower() in ("nan", "none", "<na>"):
        return None
    # "1.0" style codes come from spreadsheets that read the column as float
    if re.fullmatch(r"\d+\.0+", text):
        text = text.split(".")[0]
    return text.zfill(width)


def compose_unit_code(region: Any, subregion: Any) -> Optional[str]:
    """Build the 5-character composite id from a region and a sub-region code."""
    region_code = pad_code(region, REGION_WIDTH)
    subregion_code = pad_code(subregion, SUBREGION_WIDTH)
    if region_code is None or subregion_code is None:
        return None
    if len(region_code) > REGION_WIDTH or len(subregion_code) > SUBREGION_WIDTH:
        raise MalformedChangeEvent(
            f"Code wider than its field (region '{region}', sub-region '{subregion}')",
            [f"{region_code}{subregion_code}"],
        )
    return f"{region_code}{subregion_code}"


def normalize_unit_ids(series: pd.Series) -> pd.Series:
    """Normalise a column of composite ids to zero-padded 5-character strings."""
    return series.map(lambda value: pad_code(value, UNIT_CODE_WIDTH))


def numeric_columns(df: pd.DataFrame, exclude: Iterable[str] = ()) -> List[str]:
    excluded = set(exclude) | {"geometry"}
    return [
        col
        for col in df.columns
        if col not in excluded and pd.api.types.is_numeric_dtype(df[col])
        and not pd.api.types.is_bool_dtype(df[col])
    ]


def coalesce(*sources: Any) -> Any:
    """Return the first present value from an ordered list of optional sources.

    ``None``, ``NaN`` and ``MISSING`` count as absent. Returns ``MISSING`` when
    no source has a value.
    """
    for value in sources:
        if value is MISSING or value is None:
            continue
        if pd.api.types.is_scalar(value) and pd.isna(value):
            continue
        return value
    return MISSING


def leading_category(values: Mapping[str, float]) -> Any:
    """Return the category with the largest value; the lowest name wins ties.

    Categories whose value is absent are ignored. Returns ``MISSING`` when no
    category has a value.
    """
    best_name = MISSING
    best_value = None
    for name in sorted(values):
        value = coalesce(values[name])
        if value is MISSING:
            continue
        if best_value is None or value > best_value:
            best_name, best_value = name, value
    return best_name


def leading_category_column(df: pd.DataFrame, category_columns: Dict[str, str]) -> pd.Series:
    """Row-wise :func:`leading_category` over ``{category_name: column}``."""
    def _pick(row: pd.Series) -> Any:
        winner = leading_category({name: row[col] for name, col in category_columns.items()})
        return None if winner is MISSING else winner

    if df.empty:
        return pd.Series([], index=df.index, dtype=object)
    return df.apply(_pick, axis=1)
