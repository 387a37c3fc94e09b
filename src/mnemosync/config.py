"""Settings for Mnemosync.

Every tunable of the companion lives here: which Gemini models form the
primary and secondary tiers, how the companion paces scans and turn-taking,
and where the memory store is kept.

Settings come from three places (highest priority first):
- ``MNEMOSYNC_*`` environment variables, nested with ``__``
  (``MNEMOSYNC_COMPANION__PATIENT_NAME=Rose``)
- a YAML config file
- the defaults below

The Gemini API key is never part of the settings file. It is read from
``GEMINI_API_KEY`` / ``GOOGLE_API_KEY`` or from the system keyring.

Example:
    >>> from mnemosync.config import get_config, get_api_key
    >>>
    >>> cfg = get_config()
    >>> print(cfg.companion.patient_name)
    >>> if cfg.is_ai_available():
    ...     api_key = get_api_key()

Config File Format (YAML):
    ```yaml
    ai:
      mode: enabled  # enabled | disabled
      primary_model: gemini-2.0-flash
      secondary_model: gemini-1.5-flash  # null disables the secondary tier
      temperature: 0.4
      max_output_tokens: 1024
      timeout_seconds: 60

    companion:
      patient_name: Margaret
      scan_interval_seconds: 60
      analyze_every_n_turns: 3
      primary_pause_seconds: 1.2
      visitor_pause_seconds: 4.0
      visitor_lock_seconds: 15
      memory_log_size: 5
      dedupe_against_existing: true

    paths:
      data_dir: ~/.mnemosync

    debug: false
    verbose: false
    ```
"""

from __future__ import annotations

import functools
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

# Never log key material, only where a key came from
logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Settings or credentials could not be used."""


class ConfigFileError(ConfigError):
    """The YAML file is unreadable or malformed (strict loading only)."""


class APIKeyError(ConfigError):
    """Problem with the Gemini API key."""


class APIKeyNotFoundError(APIKeyError):
    """Neither the environment nor the keyring holds a usable key."""


class APIKeyInvalidError(APIKeyError):
    """The key is malformed (length or whitespace).

    Says nothing about whether Gemini would accept it.
    """


# =============================================================================
# Enums
# =============================================================================


class AIMode(str, Enum):
    """Whether the Gemini tiers may be called.

    Attributes:
        ENABLED: Model tiers are called; the heuristic tier covers failures.
        DISABLED: No network calls. Conversation analysis uses only the
                  heuristic tier and scene analysis is unavailable.
    """

    ENABLED = "enabled"
    DISABLED = "disabled"


class KeySource(str, Enum):
    """Where the API key was found."""

    ENVIRONMENT = "environment"
    KEYRING = "keyring"
    NONE = "none"


# =============================================================================
# Configuration Models
# =============================================================================


class AIConfig(BaseModel):
    """Configuration for the Gemini information sources.

    The primary model is always attempted first. The secondary model is used
    only when the primary fails; setting it to None removes that tier.

    Attributes:
        mode: AI activation mode.
        primary_model: Model used for the first tier.
        secondary_model: Model used for the fallback tier, or None.
        temperature: Sampling temperature.
        max_output_tokens: Maximum tokens in a model response.
        timeout_seconds: Per-request timeout.
    """

    mode: AIMode = Field(default=AIMode.ENABLED)
    primary_model: str = Field(default="gemini-2.0-flash")
    secondary_model: str | None = Field(default="gemini-1.5-flash")
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, ge=64, le=8192)
    timeout_seconds: int = Field(default=60, ge=5, le=600)

    def is_enabled(self) -> bool:
        return self.mode != AIMode.DISABLED


class CompanionConfig(BaseModel):
    """Behaviour of the conversation and scene companions.

    Attributes:
        patient_name: Name of the person the companion supports.
        scan_interval_seconds: Period of the automatic scene re-scan.
        analyze_every_n_turns: Conversation analysis runs on the first turn and
            then every N turns.
        primary_pause_seconds: Silence after which the patient's turn is
            considered over and the visitor is assumed to speak.
        visitor_pause_seconds: Silence after which the visitor's turn is
            considered over.
        visitor_lock_seconds: Minimum time the speaker stays on the visitor
            before a sighting of the patient may switch it back.
        memory_log_size: Entries kept in the rolling activity log.
        dedupe_against_existing: Suppress events already stored with the
            same label and date.
    """

    patient_name: str = Field(default="User")
    scan_interval_seconds: float = Field(default=60.0, ge=5.0)
    analyze_every_n_turns: int = Field(default=3, ge=1)
    primary_pause_seconds: float = Field(default=1.2, ge=0.0)
    visitor_pause_seconds: float = Field(default=4.0, ge=0.0)
    visitor_lock_seconds: float = Field(default=15.0, ge=0.0)
    memory_log_size: int = Field(default=5, ge=1)
    dedupe_against_existing: bool = Field(default=True)


class PathsConfig(BaseModel):
    """Where Mnemosync keeps its files.

    Attributes:
        data_dir: Directory holding the JSON memory store.
        log_dir: Directory for --debug log files. Defaults to data_dir/logs.
    """

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".mnemosync")
    log_dir: Path | None = Field(default=None)

    @field_validator("data_dir", "log_dir", mode="before")
    @classmethod
    def expand_user(cls, v: Any) -> Any:
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().resolve()
        return v

    @model_validator(mode="after")
    def default_log_dir(self) -> "PathsConfig":
        if self.log_dir is None:
            self.log_dir = self.data_dir / "logs"
        return self


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Environment variables outrank values passed in (which is how the YAML
    file is applied by ``load_config``), which outrank defaults.

    Example:
        >>> import os
        >>> os.environ["MNEMOSYNC_COMPANION__PATIENT_NAME"] = "Margaret"
        >>> AppConfig().companion.patient_name
        'Margaret'
    """

    ai: AIConfig = Field(default_factory=AIConfig)
    companion: CompanionConfig = Field(default_factory=CompanionConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    debug: bool = Field(default=False)
    verbose: bool = Field(default=False)

    model_config = {
        "env_prefix": "MNEMOSYNC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings, file_secret_settings

    def is_ai_available(self) -> bool:
        """True when the model tiers are enabled and a key can be found."""
        return self.ai.is_enabled() and APIKeyManager().get_key() is not None


# =============================================================================
# API Key Management
# =============================================================================


class APIKeyManager:
    """Finds and stores the Gemini API key.

    Lookup order: ``GEMINI_API_KEY``, ``GOOGLE_API_KEY``, then the system
    keyring. A malformed key in one place does not hide a good key in the
    next. The key is only ever handed out as a SecretStr.
    """

    KEYRING_SERVICE = "mnemosync"
    KEYRING_USERNAME = "gemini"
    ENV_VAR_NAMES = ("GEMINI_API_KEY", "GOOGLE_API_KEY")

    def __init__(self) -> None:
        self._key: SecretStr | None = None
        self._source = KeySource.NONE

    def _readers(self) -> list[tuple[KeySource, Callable[[], str | None]]]:
        return [
            (KeySource.ENVIRONMENT, self._read_from_environment),
            (KeySource.KEYRING, self._read_from_keyring),
        ]

    def get_key(self) -> SecretStr | None:
        """Return the first well-formed key, or None."""
        if self._key is not None:
            return self._key

        for source, read in self._readers():
            candidate = read()
            if candidate and self.validate_key_format(candidate):
                self._key, self._source = SecretStr(candidate), source
                logger.debug(f"API key found in {source.value}")
                return self._key

        self._source = KeySource.NONE
        logger.debug("No API key configured")
        return None

    def get_key_source(self) -> KeySource:
        return self._source

    def store_key(self, key: str) -> None:
        """Save a key to the system keyring.

        Raises:
            APIKeyInvalidError: If the key is malformed.
            ConfigError: If the keyring refuses the write.
        """
        if not self.validate_key_format(key):
            raise APIKeyInvalidError("API key must be 20-100 characters with no whitespace.")
        try:
            keyring.set_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME, key)
        except keyring.errors.KeyringError as e:
            raise ConfigError(f"Failed to store key in keyring: {type(e).__name__}") from e

        self._key, self._source = None, KeySource.NONE
        logger.info("API key stored in system keyring")

    def validate_key_format(self, key: str) -> bool:
        return bool(key) and 20 <= len(key) <= 100 and not any(c.isspace() for c in key)

    def _read_from_environment(self) -> str | None:
        for name in self.ENV_VAR_NAMES:
            value = os.environ.get(name, "").strip()
            if value:
                return value
        return None

    def _read_from_keyring(self) -> str | None:
        try:
            return keyring.get_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME)
        except keyring.errors.KeyringError as e:
            # Headless systems often have no keyring backend
            logger.debug(f"Keyring unavailable: {type(e).__name__}")
            return None


# =============================================================================
# Module-Level Functions
# =============================================================================

DEFAULT_CONFIG_LOCATIONS = [
    Path("./mnemosync.yaml"),
    Path("./mnemosync.yml"),
    Path.home() / ".mnemosync" / "config.yaml",
]


def _read_config_file(path: Path | None) -> tuple[Path | None, Any]:
    for candidate in [path, *DEFAULT_CONFIG_LOCATIONS]:
        if candidate is not None and candidate.exists():
            return candidate, yaml.safe_load(candidate.read_text(encoding="utf-8"))
    return None, None


def load_config(path: Path | None = None, strict: bool = False) -> AppConfig:
    """Build the settings from environment, YAML file and defaults.

    A missing file is not an error. A malformed one is logged and ignored,
    unless ``strict`` is set.

    Args:
        path: Config file to use before the default locations.
        strict: Raise ConfigFileError instead of falling back to defaults.

    Raises:
        ConfigFileError: Only in strict mode.
    """
    config_file: Path | None = None
    try:
        config_file, loaded = _read_config_file(path)
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigFileError(f"Config file {config_file} must contain a mapping")
    except (yaml.YAMLError, OSError, ConfigFileError) as e:
        if strict:
            if isinstance(e, ConfigFileError):
                raise
            raise ConfigFileError(f"Failed to read config file {config_file or path}: {e}") from e
        logger.warning(f"Ignoring config file {config_file or path}: {e}")
        loaded = None
    config_data: dict[str, Any] = loaded or {}

    ai_data = config_data.get("ai")
    if isinstance(ai_data, dict) and isinstance(ai_data.get("mode"), str):
        try:
            ai_data["mode"] = AIMode(ai_data["mode"].lower())
        except ValueError:
            logger.warning(f"Unknown ai.mode '{ai_data['mode']}', keeping the default")
            del ai_data["mode"]

    # Only sections present in the file are passed, so environment
    # variables still fill everything else.
    known = set(AppConfig.model_fields)
    file_values = {k: v for k, v in config_data.items() if k in known and v is not None}

    try:
        return AppConfig(**file_values)
    except (TypeError, ValueError) as e:
        if strict:
            raise ConfigFileError(f"Invalid configuration values: {e}") from e
        logger.warning(f"Invalid configuration values, using defaults: {e}")
        return AppConfig()


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Settings loaded once per process; see ``reset_config``."""
    return load_config()


def get_api_key() -> SecretStr:
    """Return the Gemini API key.

    Raises:
        APIKeyNotFoundError: If no API key is configured in any source.
    """
    key = APIKeyManager().get_key()
    if key is None:
        raise APIKeyNotFoundError(
            "No API key found. Set GEMINI_API_KEY or store one in the system keyring "
            "with 'mnemosync config set-key'."
        )
    return key


def reset_config() -> None:
    """Forget the cached settings (used by tests)."""
    get_config.cache_clear()
