"""Configuration module for turnstream."""

from turnstream.config.loader import get_config_path, load_config, save_config
from turnstream.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
