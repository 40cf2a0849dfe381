"""
Spatial helpers shared by the geometry stages.

The core never reprojects. Every layer must already be in one projected
(metric) CRS, and these helpers only enforce that contract.
"""

from typing import Dict, Iterable, List, Optional, Sequence

import geopandas as gpd
import numpy as np
from loguru import logger
from pyproj import CRS

from .errors import CRSMismatchError


def ensure_same_crs(*layers: gpd.GeoDataFrame, expected: Optional[str] = None) -> None:
    """Fail unless every layer carries the same projected CRS.

    Args:
        layers: GeoDataFrames about to meet in a spatial operation
        expected: Optional CRS (e.g. "EPSG:25830") all layers must match
    """
    crs_list = [layer.crs for layer in layers]

    if any(crs is None for crs in crs_list):
        raise CRSMismatchError("Layer has no CRS; tag it with the canonical metric CRS first")

    reference = CRS.from_user_input(expected) if expected else crs_list[0]
    mismatched = [str(crs) for crs in crs_list if crs != reference]
    if mismatched:
        raise CRSMismatchError(
            f"Layers arrive in different reference systems (expected {reference})", mismatched
        )

    if not reference.is_projected:
        raise CRSMismatchError(f"{reference} is not a planar metric CRS")

    logger.trace(f"CRS check passed for {len(layers)} layers: {reference}")


def partition_ids(unit_ids: Sequence[str], partitions: int) -> List[List[str]]:
    """Split unit ids into contiguous, non-empty chunks for data-parallel stages."""
    if partitions <= 1 or len(unit_ids) <= 1:
        return [list(unit_ids)] if len(unit_ids) else []
    chunks = np.array_split(np.asarray(list(unit_ids), dtype=object), min(partitions, len(unit_ids)))
    return [list(chunk) for chunk in chunks if len(chunk)]


def merge_partition_maps(parts: Iterable[Dict[str, dict]]) -> Dict[str, dict]:
    """Union per-partition result maps. Partitions never share a unit id."""
    merged: Dict[str, dict] = {}
    for part in parts:
        overlap = merged.keys() & part.keys()
        if overlap:
            raise ValueError(f"Partitions overlap on {sorted(overlap)[:5]}")
        merged.update(part)
    return merged
