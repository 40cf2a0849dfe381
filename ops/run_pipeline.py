#!/usr/bin/env python3
"""
Tract Reconciliation Pipeline with Click CLI

Runs the full reconcile → merge → aggregate → assemble workflow with the
ability to override configuration values from the command line instead of
editing config.yaml.

Usage:
    python -m ops.run_pipeline [OPTIONS] [COMMAND]

    # Full pipeline with the default ops/config.yaml:
    python -m ops.run_pipeline

    # Different analysis window / worker count:
    python -m ops.run_pipeline --config analysis.start_year=2020 --config analysis.workers=4

    # Only export the crosswalk table:
    python -m ops.run_pipeline crosswalk

    # Verbose logging:
    python -m ops.run_pipeline --verbose
"""

import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from loguru import logger

from ops.config_loader import Config
from ops.io import load_change_register, load_inputs, write_crosswalk, write_records
from tract_processing.errors import StageFailedError, TractPipelineError
from tract_processing.pipeline import Pipeline

PROJECT_DIR = Path(__file__).parent.parent
SCRIPT_DIR = Path(__file__).parent


class ConfigContext:
    """Click context object for config management."""

    def __init__(self, base_config_path: Optional[Path] = None):
        self.overrides: Dict[str, Any] = {}
        self.base_config_path = base_config_path or SCRIPT_DIR / "config.yaml"
        self.temp_config_path: Optional[Path] = None
        self.config: Optional[Config] = None
        self.kwargs: Dict[str, Any] = {}

    def add_override(self, key: str, value: Any):
        """Add config override using dot notation."""
        keys = key.split(".")
        current = self.overrides
        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value
        logger.debug(f"Added override: {key} = {value}")

    def get_config(self) -> Config:
        """Get config with overrides applied."""
        config_dir = self.base_config_path.resolve().parent
        # ops/config.yaml lives one level below the project root
        project_root = config_dir.parent if config_dir.name == "ops" else config_dir
        if not self.overrides:
            return Config(self.base_config_path, project_root_override=project_root)

        with open(self.base_config_path) as f:
            config_data = yaml.safe_load(f) or {}

        self._apply_nested_override(config_data, self.overrides)

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config_data, f)
            self.temp_config_path = Path(f.name)

        return Config(self.temp_config_path, project_root_override=project_root)

    def cleanup(self):
        """Clean up temporary config file."""
        if self.temp_config_path and self.temp_config_path.exists():
            self.temp_config_path.unlink()
            logger.debug(f"Cleaned up temporary config: {self.temp_config_path}")

    def _apply_nested_override(self, base_dict: Dict, override_dict: Dict):
        for key, value in override_dict.items():
            if isinstance(value, dict) and key in base_dict and isinstance(base_dict[key], dict):
                self._apply_nested_override(base_dict[key], value)
            else:
                base_dict[key] = value


class ConfigOverride(click.ParamType):
    """Custom parameter type for config overrides."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)

        if val.lower() in ("true", "false"):
            parsed_val: Any = val.lower() == "true"
        elif val.isdigit():
            parsed_val = int(val)
        elif "." in val and val.replace(".", "", 1).isdigit():
            parsed_val = float(val)
        else:
            parsed_val = val

        return key, parsed_val


@click.group(invoke_without_command=True)
@click.option(
    "--config-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Base config.yaml (default: ops/config.yaml)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be run without executing")
@click.option(
    "--config",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., analysis.workers=4)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option(
    "--trace", is_flag=True, help="Enable TRACE level logging for deep debugging (maximum detail)"
)
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, config_file, **kwargs):
    """
    Census Tract Reconciliation Pipeline

    Reconciles sections across the 2019 and 2023 boundary vintages, merges
    canonical geometries and aggregates street and point layers onto them.

    \b
    Examples:
      python -m ops.run_pipeline                                    # Run the full pipeline
      python -m ops.run_pipeline --config analysis.end_year=2022    # Different analysis window
      python -m ops.run_pipeline crosswalk                          # Only export the crosswalk
      python -m ops.run_pipeline --verbose --log-file pipeline.log  # Debug logging to file
    """
    setup_logging(verbose=kwargs.get("verbose", False), enable_trace=kwargs.get("trace", False))

    if kwargs.get("log_file"):
        log_level = (
            "TRACE" if kwargs.get("trace") else ("DEBUG" if kwargs.get("verbose") else "INFO")
        )
        logger.add(
            kwargs["log_file"],
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {kwargs['log_file']}")

    config_ctx = ConfigContext(config_file)
    ctx.obj = config_ctx
    ctx.call_on_close(config_ctx.cleanup)

    if not config_ctx.base_config_path.exists():
        logger.critical(f"Base configuration file not found: {config_ctx.base_config_path}")
        ctx.exit(1)

    for key, value in kwargs["config_overrides"]:
        config_ctx.add_override(key, value)

    try:
        config = config_ctx.get_config()
        logger.info(f"📋 Project: {config.get('project_name')}")
        config.print_config_summary()
    except Exception as e:
        handle_critical_error(e, "Loading configuration")
        ctx.exit(1)

    config_ctx.config = config
    config_ctx.kwargs = kwargs

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), help="Override output path")
@click.pass_context
def run(ctx, output: Optional[Path] = None):
    """Run the full reconciliation pipeline."""
    config: Config = ctx.obj.config
    if ctx.obj.kwargs.get("dry_run"):
        show_dry_run_info(config)
        return

    output_path = output or config.get_output_path("unit_records")
    start = time.time()
    try:
        inputs = load_inputs(config)
        pipeline = Pipeline(config.to_pipeline_settings())
        result = pipeline.run(inputs, persist=lambda gdf: write_records(gdf, output_path))
        write_crosswalk(result.crosswalk, config.get_output_path("crosswalk"))
    except StageFailedError as e:
        handle_critical_error(e, f"Stage '{e.stage}'")
        ctx.exit(1)
    except (TractPipelineError, OSError, KeyError, ValueError) as e:
        handle_critical_error(e, "Pipeline execution")
        ctx.exit(1)

    logger.info("=" * 60)
    logger.success("🎉 PIPELINE COMPLETE")
    logger.info("=" * 60)
    if result.excluded_units:
        logger.warning(f"⚠️ {len(result.excluded_units)} units excluded for invalid geometry")
    logger.info(f"⏱️ Total time: {time.time() - start:.1f}s")


@cli.command()
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), help="Override output path")
@click.pass_context
def crosswalk(ctx, output: Optional[Path] = None):
    """Build and export only the crosswalk table."""
    config: Config = ctx.obj.config
    try:
        changes = load_change_register(config.get_input_path("change_register"))
        entries = Pipeline(config.to_pipeline_settings()).build_crosswalk(changes)
        write_crosswalk(entries, output or config.get_output_path("crosswalk"))
    except (TractPipelineError, OSError, KeyError, ValueError) as e:
        handle_critical_error(e, "Crosswalk export")
        ctx.exit(1)


def show_dry_run_info(config: Config):
    """Show dry run information."""
    logger.info("🔍 DRY RUN MODE - Nothing will be executed")
    logger.info("=" * 60)
    logger.info(f"  📋 Project: {config.get('project_name')}")
    logger.info(
        f"  📅 Window: {config.get_analysis_setting('start_year')}-"
        f"{config.get_analysis_setting('end_year')}"
    )
    logger.info(f"  🌐 CRS: {config.get_system_setting('crs')}")

    for key in ("change_register", "boundaries", "streets"):
        path = config.get_optional_input_path(key)
        if path is None:
            logger.info(f"  ⏭️ {key}: not configured")
        else:
            logger.info(f"  📄 {key}: {path} {'✅' if path.exists() else '❌'}")
    for group in ("tables_2019", "tables_2023", "point_layers"):
        for name, path in config.get_input_group(group).items():
            logger.info(f"  📄 {group}.{name}: {path} {'✅' if path.exists() else '❌'}")


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    elif verbose:
        log_level = "DEBUG"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_level = "INFO"
        log_format = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    os.environ["LOGURU_LEVEL"] = log_level

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")


def handle_critical_error(error: Exception, context: str = "") -> None:
    """
    Log a fatal error, with the full traceback in TRACE mode.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
    """
    enable_trace = os.environ.get("LOGURU_LEVEL", "INFO") == "TRACE"

    if enable_trace:
        logger.opt(exception=error).trace(f"💥 TRACE MODE: full context for {context}")

    logger.critical(f"💥 CRITICAL ERROR: {context}")
    logger.critical(f"Exception: {type(error).__name__}: {error}")
    identifiers = getattr(error, "identifiers", None)
    if identifiers:
        logger.critical(f"Offending identifiers: {identifiers[:20]}")

    if not enable_trace:
        logger.info("💡 For detailed debugging, run with --trace flag")


if __name__ == "__main__":
    cli()
