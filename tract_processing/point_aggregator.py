"""
point_aggregator.py

Counts point features (e.g. bus stops, polling places) inside each canonical
unit polygon and derives densities.
"""

from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger

from .data_utils import category_slug, leading_category_column, validate_required_columns
from .errors import ZeroAreaError
from .spatial_utils import ensure_same_crs


class PointAggregator:
    """
    Count points per unit, boundary inclusive.

    A point lying exactly on an edge shared by several units is assigned once,
    to the lowest unit id among them.

    Example:
        aggregator = PointAggregator("unit_id", category_column="category", prefix="stops")
        stops = aggregator.aggregate(stop_points, units)
    """

    def __init__(
        self,
        id_column: str = "unit_id",
        category_column: Optional[str] = None,
        prefix: str = "point",
        crs: Optional[str] = None,
    ):
        self.id_column = id_column
        self.category_column = category_column
        self.prefix = prefix
        self.crs = crs
        self.count_column = f"{prefix}_count"
        self.density_column = f"{prefix}_density"
        self.leading_column = f"{prefix}_leading_category"

    def aggregate(self, points: gpd.GeoDataFrame, units: gpd.GeoDataFrame) -> pd.DataFrame:
        """Return one row per unit with count, density and optional per-category counts."""
        logger.info(f"📍 Counting {len(points):,} points in {len(units):,} units...")
        validate_required_columns(units, [self.id_column], "Unit layer")
        if self.category_column:
            validate_required_columns(points, [self.category_column], "Point layer")
        ensure_same_crs(points, units, expected=self.crs)

        areas = self._unit_areas(units)
        assigned = self.assign_points(points, units)

        counts = assigned.groupby(self.id_column).size()
        result = pd.DataFrame({self.id_column: list(units[self.id_column])})
        result[self.count_column] = (
            result[self.id_column].map(counts).fillna(0).astype(int)
        )
        result[self.density_column] = result[self.count_column] / areas.to_numpy()

        if self.category_column:
            result = self._add_category_counts(result, assigned)

        outside = len(points) - len(assigned)
        logger.success(
            f"  ✅ Assigned {len(assigned):,} points ({outside:,} outside every unit or invalid)"
        )
        return result

    def assign_points(self, points: gpd.GeoDataFrame, units: gpd.GeoDataFrame) -> pd.DataFrame:
        """Map each point to exactly one containing unit (lowest id wins on shared edges)."""
        is_point = points.geometry.notna() & (points.geometry.geom_type == "Point")
        if not is_point.all():
            logger.warning(f"  ⚠️ Ignoring {int((~is_point).sum()):,} non-point features")

        cols = ["geometry"] + ([self.category_column] if self.category_column else [])
        candidates = points.loc[is_point, cols].reset_index(drop=True)
        candidates["_point_idx"] = np.arange(len(candidates))

        joined = gpd.sjoin(
            candidates, units[[self.id_column, "geometry"]], how="inner", predicate="intersects"
        )
        joined = joined.sort_values(["_point_idx", self.id_column])
        ties = int(joined["_point_idx"].duplicated().sum())
        if ties:
            logger.debug(f"  🔀 {ties} points on shared edges assigned to the lowest unit id")

        assigned = joined.drop_duplicates("_point_idx", keep="first")
        keep = [self.id_column] + ([self.category_column] if self.category_column else [])
        return pd.DataFrame(assigned[keep]).reset_index(drop=True)

    def _unit_areas(self, units: gpd.GeoDataFrame) -> pd.Series:
        areas = units["area"] if "area" in units.columns else units.geometry.area
        areas = pd.to_numeric(areas, errors="coerce")
        bad = units.loc[~(areas > 0).to_numpy(), self.id_column]
        if len(bad):
            raise ZeroAreaError(
                "Density requested for units with non-positive area", bad.tolist()
            )
        return areas

    def _add_category_counts(self, result: pd.DataFrame, assigned: pd.DataFrame) -> pd.DataFrame:
        if assigned.empty:
            result[self.leading_column] = None
            return result

        # Variants of one label ("Bus Stop", "bus-stop") share a column
        slugs = assigned[self.category_column].map(category_slug).rename("category")
        table = pd.crosstab(assigned[self.id_column], slugs)
        category_map = {slug: f"{self.prefix}_count_{slug}" for slug in table.columns}
        table = table.rename(columns=category_map).rename_axis(columns=None).reset_index()

        result = result.merge(table, on=self.id_column, how="left")
        result[list(category_map.values())] = result[list(category_map.values())].fillna(0).astype(int)

        leading = leading_category_column(result, category_map)
        # Units with no points have no leading category
        result[self.leading_column] = leading.where(result[self.count_column] > 0, None)
        return result
