"""Field-level encryption for persisted synopses."""

from inbox_synopsis.security.encryption import FieldEncryptor, resolve_key

__all__ = ["FieldEncryptor", "resolve_key"]
