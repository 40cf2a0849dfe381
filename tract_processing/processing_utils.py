"""
Processing Utilities - Stage Infrastructure

Common logging and failure-reporting helpers for the pipeline stages.
"""

import time
from contextlib import contextmanager
from typing import Iterator, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import StageFailedError, TractPipelineError


@contextmanager
def processing_stage(stage_name: str, details: str = "") -> Iterator[None]:
    """
    Run one pipeline stage with consistent logging.

    Domain errors raised inside the block are re-raised as
    :class:`StageFailedError` carrying the stage name and the offending ids.
    Any other error is logged with the stage name and propagates unchanged.

    Usage:
        with processing_stage("Merge geometries"):
            units = merger.merge(boundaries)
    """
    log_processing_step(stage_name, details)
    start = time.time()
    try:
        yield
    except StageFailedError:
        raise
    except TractPipelineError as e:
        logger.critical(f"❌ Stage '{stage_name}' failed: {type(e).__name__}: {e}")
        if e.identifiers:
            logger.critical(f"   Offending identifiers: {e.identifiers[:20]}")
        raise StageFailedError(stage_name, e) from e
    except Exception as e:
        logger.critical(f"❌ Stage '{stage_name}' failed: {type(e).__name__}: {e}")
        raise
    logger.debug(f"   ⏱️ {stage_name} finished in {time.time() - start:.2f}s")


def log_data_summary(data: Union[pd.DataFrame, gpd.GeoDataFrame], data_name: str) -> None:
    """Log a standard summary of loaded data."""
    if isinstance(data, gpd.GeoDataFrame):
        logger.info(f"  ✓ Loaded {data_name}: {len(data):,} features")
        if data.crs:
            logger.debug(f"    CRS: {data.crs}")
    else:
        logger.info(f"  ✓ Loaded {data_name}: {len(data):,} rows")

    logger.debug(f"    Columns: {list(data.columns)[:10]}{'...' if len(data.columns) > 10 else ''}")


def log_processing_step(step_name: str, details: str = "") -> None:
    logger.info(f"🔄 {step_name}")
    if details:
        logger.info(f"   {details}")
