"""
Configuration loader for the StoryBridge service.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


class Config:
    """Configuration manager for StoryBridge."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._config:
            self._load_config()

    def _get_project_root(self) -> Path:
        """Get the project root directory."""
        # Navigate up from storybridge/utils to project root
        current = Path(__file__).resolve()
        return current.parent.parent.parent

    def _load_config(self) -> None:
        """Load configuration from YAML file, layered over the defaults."""
        load_dotenv(self._get_project_root() / ".env")

        config_path = Path(
            os.environ.get(
                "STORYBRIDGE_CONFIG",
                self._get_project_root() / "config" / "settings.yaml",
            )
        )

        defaults = self._get_defaults()
        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            self._config = _merge(defaults, loaded)
        else:
            # Use defaults if config doesn't exist
            self._config = defaults

    def _get_defaults(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "highlight": {
                "avg_word_duration_ms": 300,
                "sentence_gap_ms": 400,
            },
            "tts": {
                "base_url": "https://api.elevenlabs.io",
                "voice_id": "pNInz6obpgDQGcFmaJgB",
                "model_id": "eleven_flash_v2_5",
                "timeout": 60,
                "voice_settings": {
                    "stability": 0.5,
                    "similarity_boost": 0.5,
                    "style": 0.0,
                    "use_speaker_boost": True,
                },
            },
            "story": {
                "base_url": "https://generativelanguage.googleapis.com",
                "model": "gemini-2.0-flash-exp",
                "temperature": 0.9,
                "top_k": 40,
                "top_p": 0.95,
                "max_output_tokens": 1024,
                "timeout": 60,
                "min_vocab_words": 3,
                "max_vocab_words": 5,
            },
            "database": {
                "path": "data/storybridge.db",
            },
            "server": {
                "host": "127.0.0.1",
                "port": 5000,
                "allowed_origin": "*",
            },
            "auth": {
                "domain": None,
                "audience": None,
            },
        }

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example:
            config.get("highlight", "sentence_gap_ms") -> 400
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def get_path(self, *keys: str) -> Path:
        """Get a path configuration as absolute Path."""
        path = Path(self.get(*keys, default=keys[-1]))
        if path.is_absolute():
            return path
        return self._get_project_root() / path

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return self._get_project_root()

    @property
    def avg_word_duration_ms(self) -> int:
        """Estimated time a narrator spends on one word."""
        return self.get("highlight", "avg_word_duration_ms", default=300)

    @property
    def sentence_gap_ms(self) -> int:
        """Pause added after every sentence's highlight window."""
        return self.get("highlight", "sentence_gap_ms", default=400)

    @property
    def database_path(self) -> Path:
        """Get the story database file."""
        return self.get_path("database", "path")

    @property
    def elevenlabs_api_key(self) -> Optional[str]:
        return os.environ.get("ELEVENLABS_API_KEY") or os.environ.get("REACT_APP_ELEVENLABS_API_KEY")

    @property
    def gemini_api_key(self) -> Optional[str]:
        return os.environ.get("GEMINI_API_KEY") or os.environ.get("REACT_APP_GEMINI_API_KEY")

    @property
    def auth_domain(self) -> Optional[str]:
        """Identity provider domain; environment wins over the file."""
        return os.environ.get("AUTH0_DOMAIN") or self.get("auth", "domain")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Singleton instance
config = Config()
