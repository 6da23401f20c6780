import os
import urllib.parse
from dataclasses import dataclass

from lockbox.config.config_lockbox import *
from lockbox.exceptions import ConfigError


@dataclass(frozen=True)
class TimeWindow:
    """A [start, end) span of seconds used to color the totp countdown."""
    start: int
    end: int


class Settings:
    """
    Typed key -> value store for every registered variable.

    Seeded with the compiled-in defaults, then updated by the TOML
    loader. One instance is created per invocation and handed through
    the command surface.
    """

    def __init__(self, values: dict | None = None):
        self._values: dict[str, object] = {}
        self._set: set[str] = set()
        self.clear()
        for key, value in (values or {}).items():
            self.set(key, value)

    def clear(self) -> None:
        """Reset every variable back to its default."""
        self._values = {key: var.default_value() for key, var in VARIABLES.items()}
        self._set = set()

    def set(self, key: str, value) -> None:
        """
        Set a variable, checking the value against the registered type.

        Raises:
            ConfigError: If the key is unknown or the value has the
                wrong type.
        """
        var = _lookup(key)
        self._values[key] = check_value(var, value)
        self._set.add(key)

    def is_set(self, key: str) -> bool:
        return key in self._set

    def get_bool(self, key: str) -> bool:
        return self._typed(key, BOOL)

    def get_int(self, key: str) -> int:
        return self._typed(key, INT)

    def get_string(self, key: str) -> str:
        return self._typed(key, STRING)

    def get_string_array(self, key: str) -> list[str]:
        return list(self._typed(key, ARRAY))

    def _typed(self, key: str, kind: str):
        var = _lookup(key)
        if var.kind != kind:
            raise ConfigError(f"{key} is a {var.kind}, not a {kind}")
        return self._values[key]

    # ==============================================================
    # Convenience accessors
    # ==============================================================
    @property
    def store(self) -> str:
        return self.get_string(STORE)

    @property
    def readonly(self) -> bool:
        return self.get_bool(READONLY)

    def totp_url(self, value: str) -> str:
        """
        Promote a bare base32 seed to an otpauth url.

        Values that already are an otpauth url are returned as-is. A
        configured `totp.otp_format` is used as the template when set.

        Args:
            value: The seed (or url) as given by the user.

        Returns:
            An otpauth url string.
        """
        if value.startswith(OTP_AUTH):
            return value
        override = self.get_string(TOTP_OTP_FORMAT)
        if override:
            return override.replace("%s", value, 1)
        query = urllib.parse.urlencode(sorted({
            "secret": value,
            "issuer": OTP_ISSUER,
            "period": str(TOTP_DEFAULT_PERIOD),
            "algorithm": TOTP_DEFAULT_ALGORITHM,
            "digits": str(TOTP_DEFAULT_DIGITS),
        }.items()))
        return f"{OTP_AUTH}://totp/{OTP_ISSUER}:{OTP_ACCOUNT}?{query}"

    def can_color(self) -> bool:
        """Colors are allowed unless disabled by feature flag or NO_COLOR."""
        if not self.get_bool(FEATURE_COLOR):
            return False
        return NO_COLOR_ENV not in os.environ

    def color_windows(self) -> list[TimeWindow]:
        return parse_color_windows(self.get_string_array(TOTP_COLOR_WINDOWS))

    def items(self):
        """Yield (key, value) pairs in key order."""
        for key in sorted(self._values):
            yield key, self._values[key]


def _lookup(key: str) -> Variable:
    var = VARIABLES.get(key)
    if var is None:
        raise ConfigError(f"unknown key: {key}")
    return var


def _type_error(kind: str, value) -> ConfigError:
    return ConfigError(f"non-{kind} found where {kind} expected: {value!r}")


def check_value(var: Variable, value):
    """
    Validate (and copy) a value for the given variable.

    Booleans are not accepted as integers even though Python treats
    them as such.

    Returns:
        The validated value.

    Raises:
        ConfigError: On type mismatch or a value outside the allowed set.
    """
    if var.kind == BOOL:
        if not isinstance(value, bool):
            raise _type_error(BOOL, value)
        return value

    if var.kind == INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _type_error(INT, value)
        if value < 0:
            raise ConfigError(f"{value} is negative (not allowed here)")
        if var.minimum is not None and value < var.minimum:
            raise ConfigError(f"{var.key} must be >= {var.minimum}")
        return value

    if var.kind == STRING:
        if not isinstance(value, str):
            raise _type_error(STRING, value)
        if var.allowed and value not in var.allowed:
            raise ConfigError(f"invalid value for {var.key}: {value} (allowed: {', '.join(var.allowed)})")
        if var.key == TOTP_OTP_FORMAT and value and value.count("%s") != 1:
            raise ConfigError(f"{var.key} must contain exactly one '%s'")
        return value

    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"value is not of array type: {value!r}")
    items = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"value is not valid array value: {item!r}")
        items.append(item)
    if var.key == TOTP_COLOR_WINDOWS:
        parse_color_windows(items)
    return items


def parse_color_windows(rules: list[str]) -> list[TimeWindow]:
    """
    Parse `start:end` rules into time windows.

    Raises:
        ConfigError: If a rule is malformed or out of the [0, 60] range.
    """
    windows = []
    for rule in rules:
        parts = rule.split(TIME_WINDOW_SPAN)
        if len(parts) != 2:
            raise ConfigError(f"invalid colorization rule found: {rule}")
        try:
            start, end = int(parts[0]), int(parts[1])
        except ValueError:
            raise ConfigError(f"invalid colorization rule found: {rule}")
        if start < 0 or end > 60 or start >= end:
            raise ConfigError(f"invalid time window: {rule}")
        windows.append(TimeWindow(start, end))
    return windows
