import sys
from pathlib import Path
from typing import Any


def apply_common_settings(
    settings: Any | None,
    settings_class: type[Any],
    model_config: Any,
) -> Any | None:
    """Apply common settings (temperature, max_tokens) to model settings.

    Args:
        settings: Existing settings instance or None
        settings_class: Settings class to instantiate if needed
        model_config: ModelConfig with temperature and max_tokens

    Returns:
        Updated settings instance or None if no settings to apply
    """
    if model_config.temperature is None and model_config.max_tokens is None:
        return settings

    if settings is None:
        settings_dict = settings_class()
    else:
        settings_dict = settings

    if model_config.temperature is not None:
        settings_dict["temperature"] = model_config.temperature

    if model_config.max_tokens is not None:
        settings_dict["max_tokens"] = model_config.max_tokens

    return settings_dict


def get_model(
    model_config: Any,
    app_config: Any | None = None,
) -> Any:
    """
    Get a model instance for the specified configuration.

    Args:
        model_config: ModelConfig with provider, model, and settings
        app_config: AppConfig for provider base URLs (defaults to global Config)

    Returns:
        A configured model instance
    """
    from pydantic_ai.models.openai import OpenAIChatModel, OpenAIChatModelSettings
    from pydantic_ai.providers.ollama import OllamaProvider
    from pydantic_ai.providers.openai import OpenAIProvider

    if app_config is None:
        from ktree.pipeline.config import Config

        app_config = Config

    provider = model_config.provider
    model = model_config.name

    if provider == "ollama":
        model_settings = apply_common_settings(
            None, OpenAIChatModelSettings, model_config
        )
        return OpenAIChatModel(
            model_name=model,
            provider=OllamaProvider(
                base_url=f"{app_config.providers.ollama.base_url}/v1"
            ),
            settings=model_settings,
        )

    elif provider == "openai":
        # o-series reasoning models reject a custom temperature
        openai_settings: Any = None
        if model.startswith(("o1", "o3", "o4")):
            if model_config.max_tokens is not None:
                openai_settings = OpenAIChatModelSettings(
                    max_tokens=model_config.max_tokens
                )
        else:
            openai_settings = apply_common_settings(
                None, OpenAIChatModelSettings, model_config
            )

        if model_config.base_url:
            return OpenAIChatModel(
                model_name=model,
                provider=OpenAIProvider(base_url=model_config.base_url),
                settings=openai_settings,
            )
        return OpenAIChatModel(model_name=model, settings=openai_settings)

    elif provider == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel, AnthropicModelSettings

        anthropic_settings = apply_common_settings(
            None, AnthropicModelSettings, model_config
        )
        return AnthropicModel(model_name=model, settings=anthropic_settings)

    elif provider in ("gemini", "google"):
        from pydantic_ai.models.google import GoogleModel, GoogleModelSettings

        gemini_settings = apply_common_settings(
            None, GoogleModelSettings, model_config
        )
        return GoogleModel(model_name=model, settings=gemini_settings)

    elif provider in ("vllm", "lm_studio"):
        base_url = model_config.base_url or (
            app_config.providers.vllm.base_url
            if provider == "vllm"
            else app_config.providers.lm_studio.base_url
        )
        compat_settings = apply_common_settings(
            None, OpenAIChatModelSettings, model_config
        )
        return OpenAIChatModel(
            model_name=model,
            provider=OpenAIProvider(
                base_url=f"{base_url.rstrip('/')}/v1", api_key="none"
            ),
            settings=compat_settings,
        )

    else:
        # For any other provider, use string format and let Pydantic AI handle it
        return f"{provider}:{model}"


def get_default_data_dir() -> Path:
    """Get the user data directory for the current system platform.

    Linux: ~/.local/share/ktree
    macOS: ~/Library/Application Support/ktree
    Windows: C:/Users/<USER>/AppData/Roaming/ktree

    Returns:
        User Data Path.
    """
    home = Path.home()

    system_paths = {
        "win32": home / "AppData/Roaming/ktree",
        "linux": home / ".local/share/ktree",
        "darwin": home / "Library/Application Support/ktree",
    }

    return system_paths.get(sys.platform, home / ".ktree")
