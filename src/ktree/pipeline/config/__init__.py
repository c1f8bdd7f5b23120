from ktree.pipeline.config.loader import (
    find_config_file,
    generate_default_config,
    load_yaml_config,
)
from ktree.pipeline.config.models import (
    AppConfig,
    EmbeddingModelConfig,
    EmbeddingsConfig,
    ModelConfig,
    OllamaConfig,
    OntologyConfig,
    ProvidersConfig,
    StorageConfig,
    ValidationConfig,
)

__all__ = [
    "Config",
    "AppConfig",
    "StorageConfig",
    "EmbeddingsConfig",
    "EmbeddingModelConfig",
    "ModelConfig",
    "OntologyConfig",
    "ValidationConfig",
    "OllamaConfig",
    "ProvidersConfig",
    "find_config_file",
    "load_yaml_config",
    "generate_default_config",
    "load_config",
    "set_config",
]


def load_config(config_path=None) -> AppConfig:
    """Load configuration from a YAML file, falling back to defaults."""
    path = find_config_file(config_path)
    if path:
        return AppConfig.model_validate(load_yaml_config(path))
    return AppConfig()


class ConfigProxy:
    """Proxy for the global configuration that allows runtime updates."""

    def __init__(self):
        self._config = load_config()

    def __getattr__(self, name):
        """Proxy attribute access to the underlying config."""
        return getattr(self._config, name)

    def get(self) -> AppConfig:
        """Return the wrapped configuration object."""
        return self._config

    def set(self, config: AppConfig) -> None:
        """Replace the current configuration."""
        self._config = config


# Create the global Config instance
Config = ConfigProxy()


def set_config(config: AppConfig) -> None:
    """Set the global configuration programmatically.

    This allows library users to configure ktree without needing
    a YAML file.

    Example:
        >>> from ktree.pipeline.config import set_config, AppConfig
        >>> set_config(AppConfig(ontology={"model": {"provider": "openai", "name": "o3"}}))
    """
    Config.set(config)
