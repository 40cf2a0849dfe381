"""
geometry_merger.py

Dissolves boundary fragments that reconcile onto the same canonical unit.

Fragments are expected to be rekeyed already (see IdentifierReconciler.rekey).
A group of one fragment passes through; larger groups are unioned and the
area is recomputed from the unioned shape. Fragments that touch along a shared
edge, or overlap in slivers, would otherwise be double-counted by summing
fragment areas.
"""

from typing import Dict, List, Optional

import geopandas as gpd
import pandas as pd
from loguru import logger
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import explain_validity

from .data_utils import validate_required_columns
from .errors import GeometryError
from .spatial_utils import ensure_same_crs

POLYGONAL_TYPES = ("Polygon", "MultiPolygon")


class GeometryMerger:
    """
    Merge canonical unit geometries and recompute their area.

    Invalid units are never emitted with a zero or partial area. They are
    excluded, listed in ``self.excluded`` and, unless ``allow_partial`` is set,
    raised as a :class:`GeometryError`.

    Example:
        merger = GeometryMerger("unit_id", crs="EPSG:25830")
        units = merger.merge(rekeyed_boundaries)
    """

    def __init__(self, id_column: str = "unit_id", crs: Optional[str] = None,
                 allow_partial: bool = False):
        self.id_column = id_column
        self.crs = crs
        self.allow_partial = allow_partial
        self.excluded: Dict[str, str] = {}
        self.stats = {"input_fragments": 0, "output_units": 0, "merged_units": 0}

    def merge(self, fragments: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        logger.info(f"🧩 Merging {len(fragments):,} boundary fragments...")
        validate_required_columns(fragments, [self.id_column], "Boundary layer")
        ensure_same_crs(fragments, expected=self.crs)

        self.excluded = {}
        self.stats["input_fragments"] = len(fragments)

        rows: List[dict] = []
        for unit_id, parts in fragments.groupby(self.id_column, sort=True):
            geoms = list(parts.geometry)
            problem = self._first_problem(geoms)
            if problem:
                self._exclude(unit_id, problem)
                continue

            if len(geoms) == 1:
                merged = geoms[0]
            else:
                merged = self._union(unit_id, geoms)
                if merged is None:
                    continue
                self.stats["merged_units"] += 1
                logger.debug(f"    🔗 {unit_id}: dissolved {len(geoms)} fragments")

            rows.append({
                self.id_column: unit_id,
                "fragment_count": len(geoms),
                "area": float(merged.area),
                "geometry": merged,
            })

        if self.excluded:
            logger.warning(f"  ⚠️ Excluded {len(self.excluded)} units with invalid geometry")
            for unit_id, reason in list(self.excluded.items())[:10]:
                logger.warning(f"    - {unit_id}: {reason}")
            if not self.allow_partial:
                raise GeometryError("Invalid unit geometries", self.excluded.keys())

        merged_gdf = gpd.GeoDataFrame(
            pd.DataFrame(rows, columns=[self.id_column, "fragment_count", "area", "geometry"]),
            geometry="geometry",
            crs=fragments.crs,
        )
        self.stats["output_units"] = len(merged_gdf)
        logger.success(
            f"  ✅ {len(fragments):,} fragments → {len(merged_gdf):,} units "
            f"({self.stats['merged_units']} dissolved)"
        )
        return merged_gdf

    @staticmethod
    def _first_problem(geoms: List[Optional[BaseGeometry]]) -> Optional[str]:
        for idx, geom in enumerate(geoms):
            if geom is None or geom.is_empty:
                return f"fragment {idx} has no geometry"
            if geom.geom_type not in POLYGONAL_TYPES:
                return f"fragment {idx} is a {geom.geom_type}"
            if not geom.is_valid:
                return f"fragment {idx} invalid: {explain_validity(geom)}"
            if geom.area <= 0:
                return f"fragment {idx} has no area"
        return None

    def _union(self, unit_id: str, geoms: List[BaseGeometry]) -> Optional[BaseGeometry]:
        try:
            dissolved = unary_union(geoms)
        except Exception as e:  # GEOS raises its own exception types
            self._exclude(unit_id, f"union failed: {e}")
            return None

        if dissolved.is_empty or dissolved.geom_type not in POLYGONAL_TYPES:
            self._exclude(unit_id, f"union produced {dissolved.geom_type}")
            return None
        if not dissolved.is_valid:
            self._exclude(unit_id, f"union invalid: {explain_validity(dissolved)}")
            return None
        return dissolved

    def _exclude(self, unit_id: str, reason: str) -> None:
        self.excluded[str(unit_id)] = reason
