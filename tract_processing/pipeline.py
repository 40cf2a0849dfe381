"""
pipeline.py

Orchestrates the reconciliation stages in dependency order:

1. Parse the change register and build the crosswalk
2. Reconcile every tabular source of each vintage onto the canonical ids
3. Rekey and merge the boundary layer into canonical unit geometries
4. Aggregate linear features (length-weighted) and point layers (counts, densities)
5. Left-join every derived attribute onto the canonical geometries

Absent matches stay missing in the assembled table; zero is a valid observed
count and is never used as a placeholder. Nothing is handed to the persistence
collaborator unless every stage succeeded.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .change_parser import UnitChangeParser
from .crosswalk import CrosswalkBuilder
from .data_utils import coalesce, leading_category_column, validate_required_columns
from .geometry_merger import GeometryMerger
from .models import MISSING, ChangeEvent, ChangeKind, CrosswalkEntry
from .point_aggregator import PointAggregator
from .processing_utils import log_data_summary, processing_stage
from .reconcile import IdentifierReconciler
from .spatial_utils import ensure_same_crs
from .street_aggregator import LengthWeightedAggregator

OLD_VINTAGE = "old"
NEW_VINTAGE = "new"


@dataclass
class PipelineSettings:
    """Knobs for one pipeline run. Usually built from ``ops.Config``."""

    start_year: int = 2019
    end_year: int = 2023
    id_column: str = "unit_id"
    crs: Optional[str] = None
    boundary_vintage: str = NEW_VINTAGE
    old_label: str = "2019"
    new_label: str = "2023"
    max_category_level: int = 4
    street_category_column: str = "category_level"
    street_value_column: str = "service_level"
    point_category_column: Optional[str] = "category"
    workers: int = 1
    allow_partial_geometry: bool = False
    # output column -> ordered candidate columns; first present value wins
    coalesce_columns: Dict[str, List[str]] = field(default_factory=dict)
    # output column -> {category name: column}; argmax, lowest name wins ties
    leading_columns: Dict[str, Dict[str, str]] = field(default_factory=dict)
    change_columns: Dict[str, str] = field(default_factory=dict)


@dataclass
class PipelineInputs:
    changes: Union[pd.DataFrame, Sequence[ChangeEvent]]
    boundaries: gpd.GeoDataFrame
    old_tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    new_tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    streets: Optional[gpd.GeoDataFrame] = None
    point_layers: Dict[str, gpd.GeoDataFrame] = field(default_factory=dict)


@dataclass
class PipelineResult:
    records: gpd.GeoDataFrame
    crosswalk: List[CrosswalkEntry]
    excluded_units: Dict[str, str]
    stats: Dict[str, Any]


class Pipeline:
    """
    Run the full reconciliation and aggregation workflow.

    Example:
        pipeline = Pipeline(PipelineSettings(crs="EPSG:25830"))
        result = pipeline.run(inputs, persist=lambda gdf: gdf.to_file("units.gpkg"))
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or PipelineSettings()
        self.reconciler = IdentifierReconciler(self.settings.id_column)
        self._merger: Optional[GeometryMerger] = None

    def run(
        self,
        inputs: PipelineInputs,
        persist: Optional[Callable[[gpd.GeoDataFrame], Any]] = None,
    ) -> PipelineResult:
        s = self.settings
        logger.info("🗺️ Tract Reconciliation Pipeline")
        logger.info(f"📅 Analysis window: {s.start_year}-{s.end_year}")

        with processing_stage("Check reference systems"):
            layers = [inputs.boundaries] + list(inputs.point_layers.values())
            if inputs.streets is not None:
                layers.append(inputs.streets)
            ensure_same_crs(*layers, expected=s.crs)

        with processing_stage("Build crosswalk"):
            entries = self.build_crosswalk(inputs.changes)
            removed = CrosswalkBuilder.removed(entries)
            created = CrosswalkBuilder.created(entries)

        with processing_stage("Reconcile tabular sources"):
            old_tables = {
                name: self.reconciler.reconcile_old_to_new(df, removed)
                for name, df in inputs.old_tables.items()
            }
            new_tables = {
                name: self.reconciler.reconcile_new_to_old(df, created)
                for name, df in inputs.new_tables.items()
            }
            if old_tables and new_tables:
                self.reconciler.check_convergence(
                    self._ids(old_tables.values()), self._ids(new_tables.values())
                )

        with processing_stage("Merge canonical geometries"):
            units = self.merge_boundaries(inputs.boundaries, removed, created)
            excluded = dict(self._merger.excluded)
            # Units already reported as excluded by the merger are not re-reported here
            table_ids = self._ids(list(old_tables.values()) + list(new_tables.values())) - set(excluded)
            self.reconciler.check_against(table_ids, set(units[s.id_column]), "tables → boundaries")

        derived: List[pd.DataFrame] = []
        stats: Dict[str, Any] = {"geometry": dict(self._merger.stats)}

        if inputs.streets is not None:
            with processing_stage("Aggregate linear features"):
                aggregator = LengthWeightedAggregator(
                    id_column=s.id_column,
                    category_column=s.street_category_column,
                    max_level=s.max_category_level,
                    value_column=s.street_value_column,
                    workers=s.workers,
                    crs=s.crs,
                )
                derived.append(aggregator.aggregate(inputs.streets, units))
                stats["streets"] = dict(aggregator.stats)

        for prefix, points in inputs.point_layers.items():
            with processing_stage(f"Aggregate point layer '{prefix}'"):
                category = s.point_category_column
                if category and category not in points.columns:
                    category = None
                aggregator = PointAggregator(
                    id_column=s.id_column, category_column=category, prefix=prefix, crs=s.crs
                )
                derived.append(aggregator.aggregate(points, units))

        with processing_stage("Assemble unit records"):
            records = self.assemble(units, old_tables, new_tables, derived)
            log_data_summary(records, "unit records")

        if persist is not None:
            with processing_stage("Persist unit records"):
                persist(records)

        logger.success(f"🎉 Pipeline complete: {len(records):,} canonical units")
        return PipelineResult(records=records, crosswalk=entries, excluded_units=excluded, stats=stats)

    def build_crosswalk(
        self, changes: Union[pd.DataFrame, Sequence[ChangeEvent]]
    ) -> List[CrosswalkEntry]:
        if isinstance(changes, pd.DataFrame):
            events = UnitChangeParser(self.settings.change_columns).parse_frame(changes)
        else:
            events = list(changes)
        return CrosswalkBuilder(self.settings.start_year, self.settings.end_year).build(events)

    def merge_boundaries(
        self,
        boundaries: gpd.GeoDataFrame,
        removed: Sequence[CrosswalkEntry],
        created: Sequence[CrosswalkEntry],
    ) -> gpd.GeoDataFrame:
        """Rekey the boundary layer from its own vintage, then dissolve fragments."""
        s = self.settings
        if s.boundary_vintage == NEW_VINTAGE:
            mapping = CrosswalkBuilder.as_mapping(created, ChangeKind.CREATED)
        elif s.boundary_vintage == OLD_VINTAGE:
            mapping = CrosswalkBuilder.as_mapping(removed, ChangeKind.REMOVED)
        else:
            raise ValueError(f"Unknown boundary vintage: {s.boundary_vintage}")

        rekeyed = self.reconciler.rekey(boundaries, mapping)
        self._merger = GeometryMerger(s.id_column, crs=s.crs, allow_partial=s.allow_partial_geometry)
        return self._merger.merge(rekeyed)

    def assemble(
        self,
        units: gpd.GeoDataFrame,
        old_tables: Mapping[str, pd.DataFrame],
        new_tables: Mapping[str, pd.DataFrame],
        derived: Sequence[pd.DataFrame],
    ) -> gpd.GeoDataFrame:
        """Left-join every table onto the canonical geometries; absent matches stay missing."""
        s = self.settings
        records = units.copy()

        tables = [self._label(df, s.old_label) for df in old_tables.values()]
        tables += [self._label(df, s.new_label) for df in new_tables.values()]
        tables += list(derived)

        for table in tables:
            validate_required_columns(table, [s.id_column], "Joined table")
            overlap = (set(table.columns) & set(records.columns)) - {s.id_column}
            if overlap:
                raise ValueError(f"Column collision while joining: {sorted(overlap)}")
            records = records.merge(pd.DataFrame(table), on=s.id_column, how="left")

        for output, candidates in s.coalesce_columns.items():
            present = [col for col in candidates if col in records.columns]
            if not present:
                records[output] = None
                continue
            records[output] = [
                self._none_if_missing(coalesce(*values))
                for values in records[present].itertuples(index=False, name=None)
            ]

        for output, category_map in s.leading_columns.items():
            present = {name: col for name, col in category_map.items() if col in records.columns}
            records[output] = leading_category_column(records, present) if present else None

        return gpd.GeoDataFrame(records, geometry="geometry", crs=units.crs)

    def _label(self, df: pd.DataFrame, label: str) -> pd.DataFrame:
        id_col = self.settings.id_column
        renamed = {col: f"{col}_{label}" for col in df.columns if col not in (id_col, "geometry")}
        return pd.DataFrame(df.drop(columns=["geometry"], errors="ignore")).rename(columns=renamed)

    def _ids(self, tables) -> set:
        ids = set()
        for df in tables:
            ids.update(df[self.settings.id_column])
        return ids

    @staticmethod
    def _none_if_missing(value: Any) -> Any:
        return None if value is MISSING else value
