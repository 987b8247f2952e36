"""Session and settings persistence."""

from xangi.lifecycle.sessions import SessionStore, reset_session
from xangi.lifecycle.settings import Settings, SettingsStore, format_settings

__all__ = ["SessionStore", "Settings", "SettingsStore", "format_settings", "reset_session"]
