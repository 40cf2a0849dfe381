import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import LineString, Point

from conftest import CRS, square_layer
from tract_processing.errors import CRSMismatchError
from tract_processing.street_aggregator import LengthWeightedAggregator, invert_category


def streets(lines, levels) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame({"category_level": levels}, geometry=lines, crs=CRS)


@pytest.fixture
def boundary_streets() -> gpd.GeoDataFrame:
    # 100 m of level 1 inside A; 50 m of level 4 crossing x=100 (30 m in A, 20 m in B)
    return streets(
        [LineString([(0, 50), (100, 50)]), LineString([(70, 80), (120, 80)])],
        [1, 4],
    )


def test_invert_category():
    assert invert_category(pd.Series([1, 2, 3, 4]), 4).tolist() == [4, 3, 2, 1]


def test_straddling_street_is_clipped_per_unit(adjacent_units, boundary_streets):
    result = LengthWeightedAggregator(crs=CRS).aggregate(boundary_streets, adjacent_units)

    by_id = result.set_index("unit_id")
    assert by_id.loc["A", "street_length"] == pytest.approx(130)
    assert by_id.loc["B", "street_length"] == pytest.approx(20)
    assert by_id.loc["A", "service_level"] == pytest.approx(430 / 130)
    assert by_id.loc["B", "service_level"] == pytest.approx(1.0)


def test_weighted_average_is_bounded(adjacent_units, boundary_streets):
    result = LengthWeightedAggregator().aggregate(boundary_streets, adjacent_units)

    assert result["service_level"].between(1, 4).all()


def test_unit_without_streets_is_missing_not_zero(boundary_streets):
    units = square_layer(["A", "C"], [(0, 0, 100, 100), (500, 500, 600, 600)])

    result = LengthWeightedAggregator().aggregate(boundary_streets, units)

    row = result.set_index("unit_id").loc["C"]
    assert row["street_length"] == 0
    assert pd.isna(row["service_level"])


def test_invalid_categories_and_geometries_are_discarded(adjacent_units):
    layer = streets(
        [
            LineString([(0, 50), (100, 50)]),
            LineString([(0, 10), (100, 10)]),
            LineString([(0, 20), (100, 20)]),
            Point(5, 5),
        ],
        [2, 7, "x", 1],
    )

    aggregator = LengthWeightedAggregator()
    result = aggregator.aggregate(layer, adjacent_units)

    assert aggregator.stats["discarded_features"] == 3
    assert result.set_index("unit_id").loc["A", "service_level"] == pytest.approx(3.0)


def test_parallel_workers_match_sequential(boundary_streets):
    units = square_layer(
        ["A", "B", "C", "D"],
        [(0, 0, 100, 100), (100, 0, 200, 100), (0, 100, 100, 200), (100, 100, 200, 200)],
    )

    sequential = LengthWeightedAggregator(workers=1).aggregate(boundary_streets, units)
    parallel = LengthWeightedAggregator(workers=3).aggregate(boundary_streets, units)

    pd.testing.assert_frame_equal(sequential, parallel)


def test_empty_street_layer_gives_missing_values(adjacent_units):
    layer = streets([], [])

    result = LengthWeightedAggregator().aggregate(layer, adjacent_units)

    assert result["service_level"].isna().all()
    assert result["street_length"].tolist() == [0.0, 0.0]


def test_mismatched_crs_is_rejected(adjacent_units, boundary_streets):
    with pytest.raises(CRSMismatchError):
        LengthWeightedAggregator().aggregate(boundary_streets.to_crs("EPSG:25831"), adjacent_units)


def test_street_along_shared_edge_counts_once_for_lowest_id(adjacent_units):
    layer = streets([LineString([(100, 0), (100, 100)])], [1])

    result = LengthWeightedAggregator().aggregate(layer, adjacent_units)

    by_id = result.set_index("unit_id")
    assert result["street_length"].sum() == pytest.approx(100)
    assert by_id.loc["A", "street_length"] == pytest.approx(100)
    assert by_id.loc["A", "service_level"] == pytest.approx(4.0)
    assert pd.isna(by_id.loc["B", "service_level"])


def test_shared_edge_rule_holds_in_parallel(adjacent_units):
    layer = streets(
        [LineString([(100, 0), (100, 100)]), LineString([(50, 50), (150, 50)])], [2, 3]
    )

    sequential = LengthWeightedAggregator(workers=1).aggregate(layer, adjacent_units)
    parallel = LengthWeightedAggregator(workers=2).aggregate(layer, adjacent_units)

    pd.testing.assert_frame_equal(sequential, parallel)
    assert sequential["street_length"].sum() == pytest.approx(200)
