"""Configuration module for dollar-rates.

Runtime settings come from pydantic-settings; per-bank source descriptions
are static and live in ``config.sources``.
"""

from config.settings import GlobalConfig, get_config
from config.sources import SourceConfig, load_source_configs

__all__ = ["GlobalConfig", "SourceConfig", "get_config", "load_source_configs"]
