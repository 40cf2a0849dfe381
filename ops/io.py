"""
Input loading and output persistence for the pipeline CLI.

The core in ``tract_processing`` only sees typed frames; every file format
concern lives here.
"""

from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from tract_processing.crosswalk import CrosswalkBuilder
from tract_processing.data_utils import normalize_unit_ids
from tract_processing.models import CrosswalkEntry
from tract_processing.pipeline import PipelineInputs
from tract_processing.processing_utils import log_data_summary

from .config_loader import Config

DRIVERS = {".gpkg": "GPKG", ".geojson": "GeoJSON", ".json": "GeoJSON", ".shp": "ESRI Shapefile"}


def ensure_output_directory(output_path: Union[str, Path]) -> Path:
    """Ensure output directory exists and return Path object."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def load_change_register(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    log_data_summary(df, f"change register ({path.name})")
    return df


def load_table(path: Path, id_column: str) -> pd.DataFrame:
    """Load a per-unit table of absolute counts keyed by the composite id."""
    df = pd.read_csv(path, dtype={id_column: str})
    if id_column not in df.columns:
        raise KeyError(f"{path.name}: id column '{id_column}' not found")
    df[id_column] = normalize_unit_ids(df[id_column])
    log_data_summary(df, path.name)
    return df


def load_layer(path: Path, id_column: Optional[str] = None) -> gpd.GeoDataFrame:
    gdf = gpd.read_file(path)
    if id_column and id_column in gdf.columns:
        gdf[id_column] = normalize_unit_ids(gdf[id_column])
    log_data_summary(gdf, path.name)
    return gdf


def load_inputs(config: Config) -> PipelineInputs:
    """Load every input named in the configuration into memory."""
    logger.info("📥 Loading inputs...")
    id_column = config.get_column_name("unit_id")

    streets_path = config.get_optional_input_path("streets")
    return PipelineInputs(
        changes=load_change_register(config.get_input_path("change_register")),
        boundaries=load_layer(config.get_input_path("boundaries"), id_column),
        old_tables=_load_tables(config.get_input_group("tables_2019"), id_column),
        new_tables=_load_tables(config.get_input_group("tables_2023"), id_column),
        streets=load_layer(streets_path) if streets_path else None,
        point_layers={
            name: load_layer(path) for name, path in config.get_input_group("point_layers").items()
        },
    )


def _load_tables(paths: Dict[str, Path], id_column: str) -> Dict[str, pd.DataFrame]:
    return {name: load_table(path, id_column) for name, path in paths.items()}


def write_records(gdf: gpd.GeoDataFrame, output_path: Union[str, Path]) -> Path:
    """Persist the assembled unit records; format follows the file extension."""
    output_path = ensure_output_directory(output_path)
    suffix = output_path.suffix.lower()

    logger.info(f"💾 Writing {len(gdf):,} unit records to {output_path}")
    if suffix == ".parquet":
        gdf.to_parquet(output_path)
    elif suffix in DRIVERS:
        gdf.to_file(output_path, driver=DRIVERS[suffix])
    else:
        raise ValueError(f"Unsupported output format: {suffix}")

    logger.success(f"  ✅ Saved {output_path}")
    return output_path


def write_crosswalk(entries: Iterable[CrosswalkEntry], output_path: Union[str, Path]) -> Path:
    output_path = ensure_output_directory(output_path)
    frame = CrosswalkBuilder.to_frame(entries)
    frame.to_csv(output_path, index=False)
    logger.success(f"  ✅ Saved crosswalk ({len(frame):,} entries) to {output_path}")
    return output_path
