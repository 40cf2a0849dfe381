"""Shared fixtures: small square sections in a projected metric CRS."""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

CRS = "EPSG:25830"


def square_layer(ids, boxes, **columns) -> gpd.GeoDataFrame:
    data = {"unit_id": list(ids), **columns}
    return gpd.GeoDataFrame(data, geometry=[box(*b) for b in boxes], crs=CRS)


@pytest.fixture
def crs():
    return CRS


@pytest.fixture
def adjacent_units() -> gpd.GeoDataFrame:
    """Units A (0..100) and B (100..200), sharing the edge x=100."""
    return square_layer(["A", "B"], [(0, 0, 100, 100), (100, 0, 200, 100)])


@pytest.fixture
def change_register() -> pd.DataFrame:
    """01001 absorbed into 01002; 01004 split out of 01003; one change before the window."""
    return pd.DataFrame(
        {
            "district": ["01", "01", "01"],
            "section": ["001", "004", "009"],
            "origin": [None, "003", None],
            "destination": ["002", None, "008"],
            "entry_year": ["1990", "2021", "1990"],
            "exit_year": ["2020", None, "2001"],
        }
    )


@pytest.fixture
def boundaries_2023() -> gpd.GeoDataFrame:
    """2023 vintage: 01002, and 01003 split into 01003 + 01004."""
    return square_layer(
        ["01002", "01003", "01004"],
        [(0, 0, 100, 100), (100, 0, 150, 100), (150, 0, 200, 100)],
    )
