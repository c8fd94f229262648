"""Configuration module for fleetcore."""

from fleetcore.config.loader import get_config_path, load_config, save_config
from fleetcore.config.schema import ApiAuthConfig, ApiConfig, Config

__all__ = ["ApiAuthConfig", "ApiConfig", "Config", "get_config_path", "load_config", "save_config"]
