"""Configuration module for wscli."""

from wscli.config.loader import get_config_path, load_config, save_config, update_config
from wscli.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config", "update_config"]
