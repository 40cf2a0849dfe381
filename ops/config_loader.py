"""
Configuration Loader for the Tract Reconciliation Pipeline

This module provides a centralized way to load and access configuration
settings from the config.yaml file.

Usage:
    from ops.config_loader import Config

    config = Config()
    boundaries = config.get_input_path('boundaries')
    window = config.get_analysis_setting('start_year'), config.get_analysis_setting('end_year')
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from tract_processing.pipeline import PipelineSettings


class Config:
    """Configuration manager for the tract reconciliation pipeline."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "columns": {
            "unit_id": "unit_id",
            "street_category": "category_level",
            "point_category": "category",
            "change_district": "district",
            "change_section": "section",
            "change_origin": "origin",
            "change_destination": "destination",
            "change_entry_year": "entry_year",
            "change_exit_year": "exit_year",
        },
        "analysis": {
            "start_year": 2019,
            "end_year": 2023,
            "boundary_vintage": "new",
            "old_label": "2019",
            "new_label": "2023",
            "max_category_level": 4,
            "street_value_column": "service_level",
            "workers": 1,
            "allow_partial_geometry": False,
            "coalesce": {},
            "leading_category": {},
        },
        "system": {
            "crs": "EPSG:25830",
        },
        "directories": {
            "data": "data",
            "output": "data/processed",
        },
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        project_root_override: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable PIPELINE_CONFIG_PATH
                        2. config.yaml in current directory
                        3. ops/config.yaml
            project_root_override: Override project root detection (useful for temp configs)
        """
        if config_file is None:
            env_config = os.environ.get("PIPELINE_CONFIG_PATH")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            elif Path("ops/config.yaml").exists():
                config_file = "ops/config.yaml"
                logger.debug("Using ops/config.yaml from project root")
            else:
                raise FileNotFoundError(
                    "No config.yaml found. Check current directory or set PIPELINE_CONFIG_PATH"
                )

        self.config_path = Path(config_file).resolve()

        if project_root_override:
            self.project_root = Path(project_root_override).resolve()
            logger.debug(f"Using project root override: {self.project_root}")
        elif os.environ.get("PROJECT_ROOT_OVERRIDE"):
            self.project_root = Path(os.environ["PROJECT_ROOT_OVERRIDE"]).resolve()
            logger.debug(f"Using project root from environment: {self.project_root}")
        else:
            self.project_root = self._find_project_root()

        logger.debug(f"Loading config from: {self.config_path}")
        logger.debug(f"Project root: {self.project_root}")

        with open(self.config_path, "r") as f:
            self.data = yaml.safe_load(f) or {}

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation with intelligent defaults.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return value

    def get_input_path(self, filename_key: str) -> Path:
        """
        Get full path to an input file. The path is taken directly from config.yaml
        and joined with the project root.
        """
        relative_path_str = self.data.get("input_files", {}).get(filename_key)
        if not relative_path_str:
            raise ValueError(
                f"Input filename key '{filename_key}' not found in config: input_files"
            )
        return self.project_root / relative_path_str

    def get_optional_input_path(self, filename_key: str) -> Optional[Path]:
        """Like get_input_path, but None when the key is not configured."""
        if not self.data.get("input_files", {}).get(filename_key):
            return None
        return self.get_input_path(filename_key)

    def get_input_group(self, group_key: str) -> Dict[str, Path]:
        """Resolve a mapping of named inputs, e.g. ``input_files.tables_2019``."""
        group = self.data.get("input_files", {}).get(group_key) or {}
        if not isinstance(group, dict):
            raise ValueError(f"input_files.{group_key} must be a mapping of name -> path")
        return {name: self.project_root / path for name, path in group.items()}

    def get_output_dir(self) -> Path:
        output_dir = self.project_root / self.get("directories.output")
        output_dir.mkdir(parents=True, exist_ok=True)
        return output_dir

    def get_output_path(self, filename_key: str) -> Path:
        """Get full path to an output file under the output directory."""
        filename = self.get(f"output_files.{filename_key}")
        if not filename:
            raise ValueError(f"Unknown output file key: {filename_key}")
        return self.get_output_dir() / filename

    def get_column_name(self, column_key: str) -> str:
        """Get column name with intelligent defaults."""
        result = self.get(f"columns.{column_key}")
        if isinstance(result, str):
            return result
        raise ValueError(f"Column name not found or not a string: {column_key}")

    def get_analysis_setting(self, setting_key: str) -> Any:
        return self.get(f"analysis.{setting_key}")

    def get_system_setting(self, setting_key: str) -> Any:
        return self.get(f"system.{setting_key}")

    def change_columns(self) -> Dict[str, str]:
        keys: List[str] = ["district", "section", "origin", "destination", "entry_year", "exit_year"]
        return {key: self.get_column_name(f"change_{key}") for key in keys}

    def to_pipeline_settings(self) -> PipelineSettings:
        """Build the pipeline's settings object from this configuration."""
        return PipelineSettings(
            start_year=int(self.get_analysis_setting("start_year")),
            end_year=int(self.get_analysis_setting("end_year")),
            id_column=self.get_column_name("unit_id"),
            crs=self.get_system_setting("crs"),
            boundary_vintage=self.get_analysis_setting("boundary_vintage"),
            old_label=str(self.get_analysis_setting("old_label")),
            new_label=str(self.get_analysis_setting("new_label")),
            max_category_level=int(self.get_analysis_setting("max_category_level")),
            street_category_column=self.get_column_name("street_category"),
            street_value_column=self.get_analysis_setting("street_value_column"),
            point_category_column=self.get_column_name("point_category"),
            workers=int(self.get_analysis_setting("workers")),
            allow_partial_geometry=bool(self.get_analysis_setting("allow_partial_geometry")),
            coalesce_columns=dict(self.get_analysis_setting("coalesce") or {}),
            leading_columns=dict(self.get_analysis_setting("leading_category") or {}),
            change_columns=self.change_columns(),
        )

    def print_config_summary(self) -> None:
        """Print a summary of the current configuration."""
        logger.debug("📋 Configuration Summary")
        logger.debug("=" * 50)
        logger.debug(f"Project: {self.get('project_name', 'Unknown')}")
        logger.debug(f"Config file: {self.config_path}")
        logger.debug(
            f"Window: {self.get_analysis_setting('start_year')}-{self.get_analysis_setting('end_year')}"
        )
        logger.debug(f"CRS: {self.get_system_setting('crs')}")

        logger.debug("📊 Input Files:")
        for file_key, value in self.data.get("input_files", {}).items():
            if isinstance(value, dict):
                for name, path in value.items():
                    exists = "✅" if (self.project_root / path).exists() else "❌"
                    logger.debug(f"  {exists} {file_key}.{name}")
            else:
                exists = "✅" if (self.project_root / value).exists() else "❌"
                logger.debug(f"  {exists} {file_key}")

    def _find_project_root(self) -> Path:
        """Find the project root directory by looking for characteristic files/directories."""
        current = self.config_path.parent
        project_markers = ["tract_processing", "ops", "data", "pyproject.toml", ".git"]

        for _ in range(5):  # Limit to 5 levels up
            markers_found = sum(1 for marker in project_markers if (current / marker).exists())
            if markers_found >= 2:
                return current

            parent = current.parent
            if parent == current:
                break
            current = parent

        if self.config_path.parent.name == "ops":
            return self.config_path.parent.parent

        logger.warning(
            f"Could not reliably detect project root, using config directory: {self.config_path.parent}"
        )
        return self.config_path.parent
