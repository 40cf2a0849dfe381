import numpy as np
import pandas as pd
import pytest

from tract_processing.data_utils import (
    category_slug,
    coalesce,
    compose_unit_code,
    leading_category,
    leading_category_column,
    normalize_unit_ids,
    numeric_columns,
    pad_code,
)
from tract_processing.errors import MalformedChangeEvent
from tract_processing.models import MISSING


@pytest.mark.parametrize(
    "value,width,expected",
    [("1", 2, "01"), (7, 3, "007"), ("12.0", 3, "012"), (None, 2, None), (np.nan, 2, None), ("  ", 3, None)],
)
def test_pad_code(value, width, expected):
    assert pad_code(value, width) == expected


def test_compose_unit_code():
    assert compose_unit_code("1", "23") == "01023"
    assert compose_unit_code(None, "23") is None

    with pytest.raises(MalformedChangeEvent):
        compose_unit_code("1", "2345")


def test_normalize_unit_ids():
    result = normalize_unit_ids(pd.Series([1002, "01003", None]))

    assert result.iloc[:2].tolist() == ["01002", "01003"]
    assert pd.isna(result.iloc[2])


def test_coalesce_takes_first_present_value():
    assert coalesce(None, MISSING, np.nan, 5, 6) == 5
    # Zero is an observed value
    assert coalesce(0, 3) == 0
    assert coalesce(None, np.nan) is MISSING
    assert coalesce() is MISSING


def test_missing_sentinel_is_distinct_and_falsy():
    assert MISSING is not None
    assert not MISSING
    assert repr(MISSING) == "MISSING"


def test_leading_category_lowest_name_wins_ties():
    assert leading_category({"psoe": 10, "pp": 10, "vox": 3}) == "pp"
    assert leading_category({"b": 1, "a": np.nan}) == "b"
    assert leading_category({"a": None}) is MISSING


def test_leading_category_column():
    df = pd.DataFrame({"votes_a": [1, 5, np.nan], "votes_b": [2, 5, np.nan]})

    result = leading_category_column(df, {"a": "votes_a", "b": "votes_b"})

    assert result.iloc[:2].tolist() == ["b", "a"]
    assert pd.isna(result.iloc[2])


def test_numeric_columns_skip_ids_bools_and_geometry():
    df = pd.DataFrame({"unit_id": [1], "votes": [2.0], "flag": [True], "name": ["x"]})

    assert numeric_columns(df, exclude=["unit_id"]) == ["votes"]


@pytest.mark.parametrize(
    "label,expected",
    [("Bus Stop", "bus_stop"), ("bus-stop", "bus_stop"), ("PSOE (%)", "psoe"), ("1", "1"),
     ("  ", "unknown"), (None, "unknown"), (np.nan, "unknown")],
)
def test_category_slug(label, expected):
    assert category_slug(label) == expected
