from openalex_cache.config.loader import YamlConfigLoader
from openalex_cache.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
