"""
street_aggregator.py

Length-weighted aggregation of a linear feature layer (streets) onto
canonical unit polygons.

Each street is clipped exactly against every unit it crosses, so a street
straddling a boundary contributes one sub-segment per unit, weighted by the
clipped length. A stretch running along an edge shared by several units counts
once, for the lowest unit id. Category levels run 1 (most service) ..
max_level (least) and are inverted before weighting so that larger values mean more service:

    effective_value = max_level + 1 - category_level
    weighted_average(unit) = Σ(effective_value × clipped_length) / Σ(clipped_length)

Units with no clipped length get a missing value, never zero.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger
from shapely.ops import unary_union

from .data_utils import validate_required_columns
from .spatial_utils import ensure_same_crs, merge_partition_maps, partition_ids

LINE_TYPES = ("LineString", "MultiLineString")


def invert_category(levels: pd.Series, max_level: int) -> pd.Series:
    """Map category levels onto effective values (larger = more service)."""
    return max_level + 1 - levels


class LengthWeightedAggregator:
    """Compute a per-unit length-weighted average of a linear feature attribute.

    Example:
        aggregator = LengthWeightedAggregator("unit_id", category_column="category_level")
        streets = aggregator.aggregate(street_lines, units)
    """

    def __init__(
        self,
        id_column: str = "unit_id",
        category_column: str = "category_level",
        max_level: int = 4,
        value_column: str = "service_level",
        length_column: str = "street_length",
        workers: int = 1,
        crs: Optional[str] = None,
    ):
        self.id_column = id_column
        self.category_column = category_column
        self.max_level = max_level
        self.value_column = value_column
        self.length_column = length_column
        self.workers = max(1, int(workers))
        self.crs = crs
        self.stats = {"input_features": 0, "discarded_features": 0, "sub_segments": 0}

    def aggregate(self, features: gpd.GeoDataFrame, units: gpd.GeoDataFrame) -> pd.DataFrame:
        """Return one row per unit: ``[id, length_column, value_column]``."""
        logger.info(f"🛣️ Aggregating {len(features):,} linear features onto {len(units):,} units...")
        validate_required_columns(features, [self.category_column], "Linear feature layer")
        validate_required_columns(units, [self.id_column], "Unit layer")
        ensure_same_crs(features, units, expected=self.crs)

        valid = self.prepare_features(features)
        # Built once up front; worker threads only query them
        sindex = valid.sindex if not valid.empty else None
        unit_ids = list(units[self.id_column])
        units_by_id = units.set_index(self.id_column)
        unit_sindex = units_by_id.sindex

        partitions = partition_ids(unit_ids, self.workers)
        if self.workers > 1 and len(partitions) > 1:
            logger.debug(f"  ⚙️ Clipping with {len(partitions)} partitions / {self.workers} workers")
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                parts = list(executor.map(
                    lambda chunk: self._clip_partition(
                        valid, sindex, units_by_id, unit_sindex, chunk
                    ),
                    partitions,
                ))
        else:
            parts = [
                self._clip_partition(valid, sindex, units_by_id, unit_sindex, chunk)
                for chunk in partitions
            ]

        totals = merge_partition_maps(part for part, _ in parts)
        self.stats["sub_segments"] = sum(count for _, count in parts)
        result = self._to_frame(unit_ids, totals)

        missing = int(result[self.value_column].isna().sum())
        logger.success(
            f"  ✅ {self.stats['sub_segments']:,} clipped sub-segments; "
            f"{len(result) - missing:,} units with a value, {missing:,} missing"
        )
        return result

    def prepare_features(self, features: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        """Drop non-line features and invalid category codes; add effective values."""
        self.stats["input_features"] = len(features)

        levels = pd.to_numeric(features[self.category_column], errors="coerce")
        is_line = features.geometry.notna() & features.geometry.geom_type.isin(LINE_TYPES)
        in_range = levels.between(1, self.max_level) & (levels == np.floor(levels))

        keep = is_line & in_range
        discarded = int((~keep).sum())
        self.stats["discarded_features"] = discarded
        if discarded:
            logger.warning(
                f"  ⚠️ Discarded {discarded:,} features (non-line geometry or category outside "
                f"1..{self.max_level})"
            )

        valid = features.loc[keep, ["geometry"]].copy()
        valid["effective_value"] = invert_category(levels[keep], self.max_level).astype(float)
        return valid.reset_index(drop=True)

    @staticmethod
    def _clip_partition(
        features: gpd.GeoDataFrame,
        sindex,
        units_by_id: gpd.GeoDataFrame,
        unit_sindex,
        unit_ids: Sequence[str],
    ) -> Tuple[Dict[str, dict], int]:
        totals: Dict[str, dict] = {}
        if sindex is None:
            return {unit_id: {"length": 0.0, "weighted": 0.0} for unit_id in unit_ids}, 0

        segments = 0
        for unit_id in unit_ids:
            polygon = units_by_id.geometry.loc[unit_id]
            candidates = sindex.query(polygon, predicate="intersects")
            if len(candidates) == 0:
                totals[unit_id] = {"length": 0.0, "weighted": 0.0}
                continue

            hits = features.iloc[candidates]
            clipped = hits.geometry.intersection(polygon)
            # Parts on an edge shared with a lower id belong to that unit
            neighbours = unit_sindex.query(polygon, predicate="intersects")
            lower = [
                units_by_id.geometry.iloc[i] for i in neighbours if units_by_id.index[i] < unit_id
            ]
            if lower:
                clipped = clipped.difference(unary_union(lower))
            clipped_lengths = clipped.length.to_numpy()
            values = hits["effective_value"].to_numpy()
            mask = clipped_lengths > 0
            segments += int(mask.sum())

            totals[unit_id] = {
                "length": float(clipped_lengths[mask].sum()),
                "weighted": float((clipped_lengths[mask] * values[mask]).sum()),
            }

        return totals, segments

    def _to_frame(self, unit_ids: List[str], totals: Dict[str, dict]) -> pd.DataFrame:
        lengths = np.array([totals[u]["length"] for u in unit_ids], dtype=float)
        weighted = np.array([totals[u]["weighted"] for u in unit_ids], dtype=float)

        with np.errstate(divide="ignore", invalid="ignore"):
            averages = np.where(lengths > 0, weighted / lengths, np.nan)

        return pd.DataFrame({
            self.id_column: unit_ids,
            self.length_column: lengths,
            self.value_column: averages,
        })
