"""
Configuration management and loading.

Holds the nested settings tree and the flat mapping of environment-style
secrets. Secrets are masked for every reader except raw_secrets().
"""

import copy
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .._logging import get_logger
from ..core.errors import IOFailure, NotFound, ValidationFailure

logger = get_logger("PromptLedger.Config")

SECRET_MASK = "***configured***"
SECRET_MARKERS = ("KEY", "SECRET", "TOKEN")
SECRET_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
RETENTION_PATTERN = re.compile(r"^(\d+)([hdw])$")

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "ui": {
        "theme": "dark",
        "defaultModel": "gpt-4",
        "autoSave": True,
    },
    "models": {
        "openai": "gpt-4",
        "anthropic": "claude-3-sonnet",
        "default": "gpt-4",
    },
    "logging": {
        "enabled": True,
        "includeResponses": True,
        "retention": "30d",
    },
    "prompts": {
        "autoBackup": True,
        "validateSyntax": True,
    },
}

DEFAULT_SECRETS: Dict[str, str] = {
    "OPENAI_API_KEY": "",
    "OPENAI_MODEL": "gpt-4",
    "ANTHROPIC_API_KEY": "",
    "ANTHROPIC_MODEL": "claude-3-sonnet",
}

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


@dataclass(frozen=True)
class Config:
    """Settings tree plus masked secrets as seen by a reader."""
    settings: Dict[str, Any]
    secrets: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {"config": copy.deepcopy(self.settings), "env": dict(self.secrets)}


def is_secret_key(key: str) -> bool:
    """Whether an environment-style key holds a credential."""
    return any(marker in key for marker in SECRET_MARKERS)


def mask_secrets(secrets: Dict[str, str]) -> Dict[str, str]:
    """Replace every configured credential with the mask sentinel."""
    masked = {}
    for key, value in secrets.items():
        if is_secret_key(key):
            masked[key] = SECRET_MASK if value else ""
        else:
            masked[key] = value
    return masked


def parse_retention(value: str) -> timedelta:
    """Parse a retention window such as '30d', '12h' or '2w'.

    Raises:
        ValidationFailure: If the value is not <n>h, <n>d or <n>w
    """
    match = RETENTION_PATTERN.match(str(value).strip().lower())
    if not match:
        raise ValidationFailure(
            f"Invalid retention '{value}': use <n>h, <n>d or <n>w"
        )
    amount, unit = int(match.group(1)), match.group(2)
    if unit == "h":
        return timedelta(hours=amount)
    if unit == "w":
        return timedelta(weeks=amount)
    return timedelta(days=amount)


def _validate_settings(data: Any, schema: Dict[str, Any], path: str = "") -> None:
    """Check a (partial) settings tree against the closed schema.

    Raises:
        ValidationFailure: On unknown keys or mistyped values
    """
    if not isinstance(data, dict):
        raise ValidationFailure(f"'{path or 'settings'}' must be a dictionary")

    unknown_keys = set(data) - set(schema)
    if unknown_keys:
        where = f" in {path}" if path else ""
        raise ValidationFailure(f"Unknown configuration keys{where}: {sorted(unknown_keys)}")

    for key, value in data.items():
        key_path = f"{path}.{key}" if path else key
        expected = schema[key]
        if isinstance(expected, dict):
            _validate_settings(value, expected, key_path)
        elif isinstance(expected, bool):
            if not isinstance(value, bool):
                raise ValidationFailure(f"'{key_path}' must be a boolean")
        elif not isinstance(value, str):
            raise ValidationFailure(f"'{key_path}' must be a string")

    retention = data.get("retention") if path == "logging" else None
    if retention is not None:
        parse_retention(retention)


def _validate_secrets(data: Any) -> None:
    if not isinstance(data, dict):
        raise ValidationFailure("'secrets' must be a dictionary")
    for key, value in data.items():
        if not isinstance(key, str) or not SECRET_KEY_PATTERN.match(key):
            raise ValidationFailure(f"Invalid secret key: {key!r}")
        if not isinstance(value, str):
            raise ValidationFailure(f"Secret '{key}' must be a string")


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _coerce(value: str, expected: Any, key: str) -> Any:
    if isinstance(expected, bool):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValidationFailure(f"'{key}' must be true or false")
    return value


class ConfigStore:
    """Reads and writes settings.yaml and secrets.yaml.

    Every call re-reads the files; writes validate first, then replace the
    file atomically so a failed write never leaves a partial file.
    """

    def __init__(self, settings_path, secrets_path):
        """Initialize the store.

        Args:
            settings_path: Path to the nested settings YAML file
            secrets_path: Path to the flat secrets YAML file
        """
        self.settings_path = Path(settings_path)
        self.secrets_path = Path(secrets_path)
        self._lock = threading.Lock()

    def _load(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise IOFailure(f"Failed to read configuration file {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise IOFailure(f"Configuration file {path} must contain a mapping")
        return data

    def _save(self, path: Path, data: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".yaml.tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise IOFailure(f"Failed to write configuration file {path}: {e}") from e

    def _settings(self) -> Dict[str, Any]:
        stored = self._load(self.settings_path)
        _validate_settings(stored, DEFAULT_SETTINGS)
        return _deep_merge(DEFAULT_SETTINGS, stored)

    def raw_secrets(self) -> Dict[str, str]:
        """Unmasked secrets for internal consumers such as executors."""
        stored = self._load(self.secrets_path)
        return {str(k): "" if v is None else str(v) for k, v in stored.items()}

    def initialize(self, force: bool = False) -> None:
        """Write default settings and placeholder secrets.

        Existing files are kept unless force is set.
        """
        with self._lock:
            if force or not self.settings_path.exists():
                self._save(self.settings_path, copy.deepcopy(DEFAULT_SETTINGS))
            if force or not self.secrets_path.exists():
                self._save(self.secrets_path, dict(DEFAULT_SECRETS))

    def read(self) -> Config:
        """Current configuration with credentials masked."""
        return Config(settings=self._settings(), secrets=mask_secrets(self.raw_secrets()))

    def write(
        self,
        settings: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
    ) -> None:
        """Merge a partial configuration into the stored one.

        Settings are merged by path without touching unrelated branches.
        A secret submitted as the mask sentinel is left unchanged; any
        other value, including "", overwrites the stored one.

        Raises:
            ValidationFailure: On unknown branches or malformed values
            IOFailure: If the files cannot be written
        """
        if settings is not None:
            _validate_settings(settings, DEFAULT_SETTINGS)
        if secrets is not None:
            _validate_secrets(secrets)

        with self._lock:
            if settings:
                stored = self._load(self.settings_path)
                self._save(self.settings_path, _deep_merge(stored, settings))
                logger.info("Updated settings: %s", sorted(settings))

            if secrets:
                current = self.raw_secrets()
                changed = []
                for key, value in secrets.items():
                    if value == SECRET_MASK:
                        continue
                    current[key] = value
                    changed.append(key)
                if changed:
                    self._save(self.secrets_path, current)
                    logger.info("Updated secrets: %s", sorted(changed))

    def get_value(self, key: str) -> Any:
        """Look up a dotted settings path or a secret key.

        Raises:
            NotFound: If nothing is stored under the key
        """
        secrets = self.raw_secrets()
        if key in secrets:
            return mask_secrets({key: secrets[key]})[key]

        node: Any = self._settings()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise NotFound(f'Configuration key "{key}" not found')
            node = node[part]
        return node

    def set_value(self, key: str, value: str) -> None:
        """Set one dotted settings path or secret key from a string.

        Upper-case keys without dots are secrets; boolean leaves accept
        true/false style strings.

        Raises:
            ValidationFailure: If the key is unknown or the value malformed
        """
        if not key or not isinstance(value, str):
            raise ValidationFailure("Invalid format. Use: key=value")

        if "." not in key and SECRET_KEY_PATTERN.match(key):
            self.write(secrets={key: value})
            return

        parts = key.split(".")
        schema: Any = DEFAULT_SETTINGS
        for part in parts:
            if not isinstance(schema, dict) or part not in schema:
                raise ValidationFailure(f"Unknown configuration key: {key}")
            schema = schema[part]
        if isinstance(schema, dict):
            raise ValidationFailure(f"'{key}' is a section, not a setting")

        partial: Dict[str, Any] = {parts[-1]: _coerce(value, schema, key)}
        for part in reversed(parts[:-1]):
            partial = {part: partial}
        self.write(settings=partial)
