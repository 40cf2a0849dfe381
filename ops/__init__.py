"""
Operations package for the Tract Reconciliation Pipeline

This package centralizes the operational tools:
- Configuration management
- Input loading and output persistence
- Pipeline CLI

The Config class is exposed at the package level for convenient imports:
    from ops import Config
"""

from .config_loader import Config

__all__ = ["Config"]
