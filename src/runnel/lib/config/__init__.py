"""Configuration loading for runnel."""

from runnel.lib.config.settings import CONFIG_FILENAME, RunnelConfig, load_config

__all__ = ["CONFIG_FILENAME", "RunnelConfig", "load_config"]
