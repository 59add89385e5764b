"""
Configuration resolution.

Settings (API keys, backend URL, database path) may come from several places.
``ConfigResolver`` looks a key up through ordered layers:

    1. explicit overrides (CLI flags)
    2. process environment
    3. ``.env`` file in the working directory
    4. user settings file (~/.field_expenses/settings.json)
    5. built-in defaults

Adapters receive an ``AppConfig`` built from a resolver instead of reading
the environment themselves.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

SETTINGS_PATH = Path.home() / ".field_expenses" / "settings.json"

DEFAULTS = {
    "LLM_PROVIDER": "openai",
    "FIELD_EXPENSES_DB_PATH": "./field_expenses.sqlite",
    "FIELD_EXPENSES_DB_TABLE": "transactions",
    "FIELD_EXPENSES_OPERATIONS_CACHE": str(Path.home() / ".field_expenses" / "operations.json"),
}


def load_settings(path: Path) -> Dict[str, str]:
    """Read the user settings file; a missing or unreadable file is an empty layer."""
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[WARN] Could not read settings from {path}: {e}")
        return {}
    return {k: str(v) for k, v in data.items() if v is not None}


def save_setting(key: str, value: str, path: Path = SETTINGS_PATH):
    """Persist a key in the user settings file."""
    settings = load_settings(path)
    settings[key] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2, sort_keys=True)


class ConfigResolver:
    """Resolve configuration keys through layered sources."""

    def __init__(self, overrides: Optional[Mapping[str, Optional[str]]] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 dotenv_path: Optional[Path] = Path(".env"),
                 settings_path: Optional[Path] = SETTINGS_PATH,
                 defaults: Optional[Mapping[str, str]] = None):
        self.layers = [
            {k: v for k, v in (overrides or {}).items() if v},
            dict(os.environ if environ is None else environ),
            self._dotenv(dotenv_path),
            load_settings(settings_path) if settings_path else {},
            dict(DEFAULTS if defaults is None else defaults),
        ]

    @staticmethod
    def _dotenv(path: Optional[Path]) -> Dict[str, str]:
        if path is None or not path.exists():
            return {}
        return {k: v for k, v in dotenv_values(path).items() if v is not None}

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for layer in self.layers:
            value = layer.get(key)
            if value:
                return value
        return default


@dataclass
class AppConfig:
    """Settings consumed by the adapters."""
    db_url: Optional[str] = None
    db_key: Optional[str] = None
    db_path: str = DEFAULTS["FIELD_EXPENSES_DB_PATH"]
    db_table: str = DEFAULTS["FIELD_EXPENSES_DB_TABLE"]
    llm_provider: str = DEFAULTS["LLM_PROVIDER"]
    llm_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_version: str = "2024-02-15-preview"
    user_id: Optional[str] = None
    operations_sheet_id: Optional[str] = None
    operations_cache: str = DEFAULTS["FIELD_EXPENSES_OPERATIONS_CACHE"]

    @property
    def uses_remote_store(self) -> bool:
        """True when a hosted backend URL is configured (the URL must be http/https)."""
        return bool(self.db_url and self.db_key and self.db_url.startswith("http"))

    @classmethod
    def from_resolver(cls, resolver: ConfigResolver) -> "AppConfig":
        return cls(
            db_url=resolver.get("FIELD_EXPENSES_DB_URL"),
            db_key=resolver.get("FIELD_EXPENSES_DB_KEY"),
            db_path=resolver.get("FIELD_EXPENSES_DB_PATH", DEFAULTS["FIELD_EXPENSES_DB_PATH"]),
            db_table=resolver.get("FIELD_EXPENSES_DB_TABLE", DEFAULTS["FIELD_EXPENSES_DB_TABLE"]),
            llm_provider=resolver.get("LLM_PROVIDER", DEFAULTS["LLM_PROVIDER"]),
            llm_model=resolver.get("LLM_MODEL"),
            openai_api_key=resolver.get("OPENAI_API_KEY"),
            anthropic_api_key=resolver.get("ANTHROPIC_API_KEY"),
            azure_openai_api_key=resolver.get("AZURE_OPENAI_API_KEY"),
            azure_openai_endpoint=resolver.get("AZURE_OPENAI_ENDPOINT"),
            azure_openai_api_version=resolver.get("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
            user_id=resolver.get("FIELD_EXPENSES_USER"),
            operations_sheet_id=resolver.get("OPERATIONS_SHEET_ID"),
            operations_cache=resolver.get("FIELD_EXPENSES_OPERATIONS_CACHE",
                                          DEFAULTS["FIELD_EXPENSES_OPERATIONS_CACHE"]),
        )
