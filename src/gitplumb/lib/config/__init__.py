"""Configuration loading helpers."""

from gitplumb.lib.config.settings import PlumbingConfig, load_config

__all__ = ["PlumbingConfig", "load_config"]
