"""
Tract processing package

Reconciles census sections across boundary vintages and aggregates polygon,
street and point layers onto the reconciled unit set.
"""

__version__ = "0.1.0"

# Import key components for easy access
from .change_parser import UnitChangeParser
from .crosswalk import CrosswalkBuilder
from .errors import (
    CRSMismatchError,
    GeometryError,
    MalformedChangeEvent,
    StageFailedError,
    TractPipelineError,
    UnmatchedIdentifierError,
    ZeroAreaError,
)
from .geometry_merger import GeometryMerger
from .models import MISSING, ChangeEvent, ChangeKind, CrosswalkEntry
from .pipeline import Pipeline, PipelineInputs, PipelineResult, PipelineSettings
from .point_aggregator import PointAggregator
from .reconcile import IdentifierReconciler
from .street_aggregator import LengthWeightedAggregator

__all__ = [
    "MISSING",
    "ChangeEvent",
    "ChangeKind",
    "CrosswalkEntry",
    "UnitChangeParser",
    "CrosswalkBuilder",
    "IdentifierReconciler",
    "GeometryMerger",
    "LengthWeightedAggregator",
    "PointAggregator",
    "Pipeline",
    "PipelineInputs",
    "PipelineResult",
    "PipelineSettings",
    "TractPipelineError",
    "MalformedChangeEvent",
    "UnmatchedIdentifierError",
    "GeometryError",
    "CRSMismatchError",
    "ZeroAreaError",
    "StageFailedError",
]
