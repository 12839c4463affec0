"""Service layer helpers (settings, telemetry)."""

from .settings import SecretVault, SettingsStore, SyncSettings

__all__ = [
    "SecretVault",
    "SettingsStore",
    "SyncSettings",
]
