import os
from pathlib import Path

import yaml


def find_config_file(cli_path: Path | None = None) -> Path | None:
    """Find the YAML config file using the search path.

    Search order:
    1. CLI-provided path (if given)
    2. KTREE_CONFIG_PATH environment variable
    3. ./ktree.yaml (current directory)
    4. ~/.config/ktree/config.yaml (user config)

    Returns None if no config file is found.
    """
    if cli_path:
        if cli_path.exists():
            return cli_path
        raise FileNotFoundError(f"Config file not found: {cli_path}")

    env_path = os.environ.get("KTREE_CONFIG_PATH")
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    cwd_config = Path.cwd() / "ktree.yaml"
    if cwd_config.exists():
        return cwd_config

    user_config = Path.home() / ".config" / "ktree" / "config.yaml"
    if user_config.exists():
        return user_config

    return None


def load_yaml_config(path: Path) -> dict:
    """Load and parse a YAML config file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def generate_default_config() -> dict:
    """Generate a default YAML config structure."""
    return {
        "environment": "production",
        "embeddings": {
            "model": {
                "provider": "openai",
                "name": "text-embedding-3-small",
                "vector_dim": 1536,
            },
            "cache_size": 4096,
        },
        "ontology": {
            "model": {"provider": "anthropic", "name": "claude-sonnet-4-0"},
            "similarity_threshold": 0.3,
            "embedding_batch_size": 10,
            "domain_delay": 0.5,
            "max_attempts": 3,
            "max_prompt_files": 30,
        },
        "validation": {
            "min_coverage": 100,
            "max_total_seconds": 1800,
            "max_llm_calls": 100,
            "min_cluster_similarity": 0.1,
        },
        "providers": {
            "ollama": {"base_url": "http://localhost:11434"},
            "vllm": {"base_url": "http://localhost:8000"},
            "lm_studio": {"base_url": "http://localhost:1234"},
        },
    }
