import logging
import os
import subprocess
from dataclasses import dataclass

import pendulum

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import BadCredential

logger = logging.getLogger(__name__)


@dataclass
class Credentials:
    """The password and/or key file handed to the container library."""
    password: str | None = None
    key_file: str | None = None

    def __repr__(self):
        return (
            f"Credentials(password={'<hidden>' if self.password else None}, "
            f"key_file={self.key_file})"
        )


def build_credentials(password: str | None, key_file: str | None) -> Credentials:
    """
    Check an explicit password/key file pair.

    Args:
        password: Database password, empty or None for none.
        key_file: Path to a key file, empty or None for none.

    Returns:
        Credentials with empty values normalized to None.

    Raises:
        BadCredential: If neither is set, or the key file is missing.
    """
    password = password or None
    key_file = key_file or None
    if password is None and key_file is None:
        raise BadCredential("key and/or keyfile must be set")
    if key_file is not None and not os.path.exists(key_file):
        raise BadCredential("no keyfile found on disk")
    return Credentials(password=password, key_file=key_file)


def resolve_credentials(settings: Settings) -> Credentials:
    """
    Derive the store credentials from the configured password mode.

    Modes:
        plaintext: the first password element is the password.
        command:   the password array is run, stdout is the password.
        none:      no password may be set, key file only.
        ignore:    any password is ignored, key file only.

    Returns:
        Credentials for opening the store.

    Raises:
        BadCredential: If the mode and values are inconsistent, or the
            password command fails.

    Security Notes:
        - The command runs without a shell, argv is passed verbatim.
        - Command output is never logged.
    """
    mode = settings.get_string(PASSWORD_MODE) or KEY_MODE_COMMAND
    key_file = settings.get_string(KEY_FILE)

    if mode == KEY_MODE_IGNORE:
        return build_credentials(None, key_file)
    if mode not in KEY_MODES:
        raise BadCredential(f"unknown key mode: {mode}")

    password = settings.get_string_array(PASSWORD)
    is_empty = not password or not password[0].strip()

    if mode == KEY_MODE_NONE:
        if not is_empty:
            raise BadCredential("key can NOT be set in this key mode")
        return build_credentials(None, key_file)

    if is_empty:
        raise BadCredential("key MUST be set in this key mode")

    if mode == KEY_MODE_COMMAND:
        key = run_password_command(password)
    else:
        key = password[0].strip()
    return build_credentials(key, key_file)


def run_password_command(argv: list[str]) -> str:
    """
    Run a password command and return its trimmed stdout.

    Raises:
        BadCredential: If the command can not run, fails, or prints nothing.
    """
    try:
        result = subprocess.run(argv, capture_output=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        logger.error(f"[{pendulum.now().to_iso8601_string()}] key command failed: {argv[0]}\n")
        raise BadCredential(f"key command failed: {e}")
    key = result.stdout.decode(UTF8).strip()
    if not key:
        raise BadCredential("key is empty")
    return key
