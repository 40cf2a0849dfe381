"""
Error taxonomy for the tract reconciliation pipeline.

Every error here is fatal to a pipeline run. Each one signals a data-integrity
problem in the inputs, so nothing in the core recovers from them locally.
"""

from typing import Iterable, List, Optional


class TractPipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"

    def __init__(self, message: str, identifiers: Optional[Iterable[str]] = None):
        self.identifiers: List[str] = sorted(
            {str(i) for i in (identifiers if identifiers is not None else [])}
        )
        if self.identifiers:
            shown = ", ".join(self.identifiers[:10])
            if len(self.identifiers) > 10:
                shown += f", ... ({len(self.identifiers) - 10} more)"
            message = f"{message} [{shown}]"
        super().__init__(message)


class MalformedChangeEvent(TractPipelineError):
    """Raised when a change record has both or neither of origin/destination."""

    error_code = "MALFORMED_CHANGE_EVENT"


class UnmatchedIdentifierError(TractPipelineError):
    """Raised when the two vintages do not share one identifier space."""

    error_code = "UNMATCHED_IDENTIFIER"


class GeometryError(TractPipelineError):
    """Raised for invalid polygons or a failed union."""

    error_code = "GEOMETRY_ERROR"


class CRSMismatchError(TractPipelineError):
    """Raised when layers reach a spatial operation in different reference systems."""

    error_code = "CRS_MISMATCH"


class ZeroAreaError(TractPipelineError):
    """Raised when a density would be computed against a non-positive area."""

    error_code = "ZERO_AREA"


class StageFailedError(TractPipelineError):
    """Wraps a domain error with the name of the pipeline stage that raised it."""

    error_code = "STAGE_FAILED"

    def __init__(self, stage: str, cause: TractPipelineError):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.identifiers = list(cause.identifiers)
