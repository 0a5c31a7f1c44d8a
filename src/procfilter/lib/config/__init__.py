"""Configuration discovery and parsing helpers."""

from procfilter.lib.config._paths import config_path, resolve_repo_root
from procfilter.lib.config.git import GitConfigSettings, MappingSettings
from procfilter.lib.config.settings import ProcFilterConfig, load_config

__all__ = [
    "GitConfigSettings",
    "MappingSettings",
    "ProcFilterConfig",
    "config_path",
    "load_config",
    "resolve_repo_root",
]
