"""Settings profile — named startup values queried by dotted key.

Keys follow the settings-key grammar: one or more dot-separated segments,
each made of lowercase letters and digits optionally joined by ``-`` or
``_`` (``addon.my-addon.api_token``).
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import Any, Literal

from pydantic import BaseModel

from happykit.errors import InvalidSettingsKeyError

SettingSource = Literal["app", "config", "addon", "runtime"]

_SEGMENT = re.compile(r"^[a-z0-9]+(?:[_-][a-z0-9]+)*$")


def valid_setting_key(key: str) -> bool:
    """Return True when *key* matches the settings-key grammar."""
    if not key:
        return False
    return all(_SEGMENT.match(segment) for segment in key.split("."))


class SettingSpec(BaseModel):
    """A default setting declared by an addon, keyed relative to the addon."""

    model_config = {"frozen": True}

    key: str
    default: Any = None
    description: str = ""


class Setting(BaseModel):
    """A resolved profile entry."""

    model_config = {"frozen": True}

    key: str
    value: Any = None
    source: SettingSource = "runtime"

    @property
    def type_name(self) -> str:
        return type(self.value).__name__

    def is_set(self) -> bool:
        return self.value is not None and self.value != ""


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested tables into dotted keys (``{"a": {"b": 1}}`` -> ``{"a.b": 1}``)."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        full = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten(value, full))
        else:
            flat[full] = value
    return flat


class Profile:
    """Ordered map of validated settings keys to :class:`Setting` entries.

    Written during setup (application defaults, config file, addon
    defaults) and treated as read-mostly by hooks afterwards.
    """

    def __init__(self) -> None:
        self._settings: dict[str, Setting] = {}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: SettingSource = "config") -> Profile:
        profile = cls()
        for key, value in flatten(data).items():
            profile.set(key, value, source=source)
        return profile

    def has(self, key: str) -> bool:
        return key in self._settings

    def get(self, key: str, default: Any = None) -> Any:
        setting = self._settings.get(key)
        return default if setting is None else setting.value

    def setting(self, key: str) -> Setting | None:
        return self._settings.get(key)

    def set(self, key: str, value: Any, *, source: SettingSource = "runtime") -> None:
        """Set *key*, raising :class:`InvalidSettingsKeyError` for a malformed key."""
        if not valid_setting_key(key):
            raise InvalidSettingsKeyError(key)
        self._settings[key] = Setting(key=key, value=value, source=source)

    def set_default(self, key: str, value: Any, *, source: SettingSource = "addon") -> bool:
        """Set *key* only when absent. Returns whether the value was written."""
        if not valid_setting_key(key):
            raise InvalidSettingsKeyError(key)
        if key in self._settings:
            return False
        self._settings[key] = Setting(key=key, value=value, source=source)
        return True

    def all(self) -> list[Setting]:
        """All settings sorted by key."""
        return [self._settings[k] for k in sorted(self._settings)]

    def __contains__(self, key: object) -> bool:
        return key in self._settings

    def __iter__(self) -> Iterator[str]:
        return iter(self._settings)

    def __len__(self) -> int:
        return len(self._settings)
