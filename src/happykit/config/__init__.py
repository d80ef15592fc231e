"""Configuration layer: layered application settings, profile, logging."""

from happykit.config.profile import Profile, Setting, SettingSpec, valid_setting_key
from happykit.config.settings import AppSettings

__all__ = ["AppSettings", "Profile", "Setting", "SettingSpec", "valid_setting_key"]
