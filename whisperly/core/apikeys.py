"""API key lookup and storage."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Optional

from .config import Settings
from .logger import get_logger
from .ports import SecretsProvider


logger = get_logger("whisperly.secrets")

_KEY_FIELD = "gemini_api_key"


def is_valid_api_key_format(key: str | None) -> bool:
    """Cheap sanity check for Gemini keys before any network call."""
    if not key:
        return False
    key = key.strip()
    return len(key) >= 32 and key.upper().startswith("AI")


class SettingsSecrets:
    """Key taken from the environment / .env through Settings."""

    def __init__(self, settings: Settings, field: str = _KEY_FIELD) -> None:
        self.settings = settings
        self.field = field

    def get_api_key(self) -> Optional[str]:
        value = getattr(self.settings, self.field, None)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


class FileSecretsStore:
    """JSON file holding the API key saved by the user."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, object]:
        try:
            raw = self.path.read_text(encoding="utf-8").lstrip("\ufeff")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Secrets file %s is not valid JSON", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get_api_key(self) -> Optional[str]:
        value = self._load().get(_KEY_FIELD)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def has_api_key(self) -> bool:
        return self.get_api_key() is not None

    def save_api_key(self, key: str) -> None:
        key = (key or "").strip()
        if not key:
            raise ValueError("API key must not be empty.")
        data = self._load()
        data[_KEY_FIELD] = key
        self._write(data)
        logger.info("API key saved to %s", self.path)

    def clear_api_key(self) -> bool:
        data = self._load()
        if _KEY_FIELD not in data:
            return False
        del data[_KEY_FIELD]
        self._write(data)
        logger.info("API key removed from %s", self.path)
        return True


class ChainedSecrets:
    """First provider returning a key wins."""

    def __init__(self, providers: Iterable[SecretsProvider]) -> None:
        self.providers = list(providers)

    def get_api_key(self) -> Optional[str]:
        for provider in self.providers:
            key = provider.get_api_key()
            if key:
                return key
        return None


def build_secrets(settings: Settings) -> ChainedSecrets:
    return ChainedSecrets([SettingsSecrets(settings), FileSecretsStore(settings.secrets_file)])
