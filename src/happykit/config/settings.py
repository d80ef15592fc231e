"""Unified application settings — CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — application identity declared in code and global CLI flags
  2. Env vars     — ``<SLUG>_*`` prefix (``my-app`` reads ``MY_APP_VERBOSE``)
  3. TOML file    — ``<slug>.toml`` discovered via walk-up
  4. Code defaults

Uses Pydantic Settings v2 with a custom :class:`TomlSettingsSource` that
reuses the walk-up discovery from :mod:`happykit.config.discovery`.
"""

from __future__ import annotations

import logging
import re
import threading
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from happykit.config.discovery import env_prefix, find_config
from happykit.errors import ConfigError

_SLUG = re.compile(r"^[a-z][a-z0-9-]*$")


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``<slug>.toml`` file discovered via walk-up."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise ConfigError(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        """Return the full TOML data dict for Pydantic to merge."""
        return self._data


logger = logging.getLogger(__name__)

# Thread-local storage for TOML path during construction.
_tls = threading.local()


class AppSettings(BaseSettings):
    """Settings for one application run, frozen after construction.

    Attributes:
        slug: Application identifier; names the config file, the env
            prefix and the root command.
        require_command: Fail setup when no command resolves.
        services_init: ``"concurrent"`` initializes every registered
            service in parallel; ``"stub"`` only logs that multi-service
            initialization is not implemented and proceeds.
        services_init_timeout: Abort service initialization after this
            many seconds. None waits indefinitely.
        secrets: Setting-key suffixes whose values are masked in output.
        profile: Startup values; nested tables become dotted keys.
    """

    model_config = {
        "frozen": True,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    # --- Identity ---
    slug: str = "happy"
    name: str = "Happy Prototype"
    description: str = ""
    version: str = "0.1.0"
    copyright_by: str = ""
    copyright_since: int | None = None
    license: str = ""

    # --- Resolved path ---
    config_path: Path | None = None

    # --- CLI flags ---
    verbose: bool = False
    quiet: bool = False
    log_json: bool = False
    json_output: bool = False

    # --- Orchestration ---
    require_command: bool = False
    services_init: Literal["concurrent", "stub"] = "concurrent"
    services_init_timeout: float | None = None
    secrets: list[str] = Field(default_factory=lambda: ["token", "secret", "password"])

    profile: dict[str, Any] = Field(default_factory=dict)

    @field_validator("slug")
    @classmethod
    def _check_slug(cls, value: str) -> str:
        if not _SLUG.match(value):
            msg = f"invalid application slug {value!r}"
            raise ValueError(msg)
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def load(
        cls,
        slug: str,
        *,
        config_path: str | Path | None = None,
        start: Path | None = None,
        **overrides: Any,
    ) -> AppSettings:
        """Construct settings for application *slug*.

        Discovers ``<slug>.toml`` via walk-up from *start* (or uses the
        explicit *config_path*) and merges *overrides* as highest-priority
        values. A missing explicit config file is not an error; it is
        logged as a warning and no other file is discovered.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                toml_path = p
            else:
                logger.warning("Config file %s not found, using defaults", p)
        else:
            toml_path = find_config(slug, start)

        _tls.toml_path = toml_path
        try:
            return cls(
                _env_prefix=env_prefix(slug),
                slug=slug,
                config_path=toml_path,
                **overrides,
            )
        finally:
            _tls.toml_path = None

    def is_secret(self, key: str) -> bool:
        """Whether the value stored under settings *key* must be masked."""
        last = key.rsplit(".", 1)[-1]
        return any(last == s or last.endswith(f"_{s}") for s in self.secrets)
