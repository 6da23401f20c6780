"""
Error kinds raised by lockbox.

Every error carries a short label used by the command line when
reporting a failure as `<short>: <message>`.
"""


class LockboxError(Exception):
    """Base class for all lockbox failures."""
    short = "error"


class BadPath(LockboxError):
    short = "invalid path"


class BadCredential(LockboxError):
    short = "invalid credentials"


class BadField(LockboxError):
    short = "invalid field"


class NotFound(LockboxError):
    short = "not found"


class Conflict(LockboxError):
    short = "conflict"


class ReadOnly(LockboxError):
    short = "readonly"


class ConfigError(LockboxError):
    short = "invalid configuration"


class CodecError(LockboxError):
    short = "store error"


class ClipboardError(LockboxError):
    short = "clipboard error"


class TOTPError(LockboxError):
    short = "totp error"


class FeatureDisabled(LockboxError):
    short = "feature disabled"


class Cancelled(LockboxError):
    """Raised when the user declines a confirmation, not a failure."""
    short = "cancelled"
