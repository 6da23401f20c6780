import sys

import pytest

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import BadCredential
from lockbox.utils.credentials import build_credentials, resolve_credentials


def make(mode, password=None, key_file=""):
    s = Settings()
    s.set(PASSWORD_MODE, mode)
    if password is not None:
        s.set(PASSWORD, password)
    s.set(KEY_FILE, key_file)
    return s


def test_plaintext():
    creds = resolve_credentials(make(KEY_MODE_PLAINTEXT, [" secret "]))
    assert creds.password == "secret"
    assert creds.key_file is None
    assert "secret" not in repr(creds)


def test_plaintext_requires_password():
    with pytest.raises(BadCredential, match="key MUST be set in this key mode"):
        resolve_credentials(make(KEY_MODE_PLAINTEXT, []))
    with pytest.raises(BadCredential, match="key MUST be set in this key mode"):
        resolve_credentials(make(KEY_MODE_PLAINTEXT, ["  "]))


def test_command():
    creds = resolve_credentials(make(KEY_MODE_COMMAND, [sys.executable, "-c", "print('from-cmd')"]))
    assert creds.password == "from-cmd"


def test_command_failures():
    with pytest.raises(BadCredential, match="key command failed"):
        resolve_credentials(make(KEY_MODE_COMMAND, [sys.executable, "-c", "raise SystemExit(3)"]))
    with pytest.raises(BadCredential, match="key command failed"):
        resolve_credentials(make(KEY_MODE_COMMAND, ["/nonexistent/lockbox-test-cmd"]))
    with pytest.raises(BadCredential, match="key is empty"):
        resolve_credentials(make(KEY_MODE_COMMAND, [sys.executable, "-c", "print('  ')"]))


def test_none_mode(tmp_path):
    key = tmp_path / "key"
    key.write_bytes(b"keydata")
    with pytest.raises(BadCredential, match="key can NOT be set in this key mode"):
        resolve_credentials(make(KEY_MODE_NONE, ["pw"], str(key)))
    creds = resolve_credentials(make(KEY_MODE_NONE, [], str(key)))
    assert creds.password is None
    assert creds.key_file == str(key)
    with pytest.raises(BadCredential, match="key and/or keyfile must be set"):
        resolve_credentials(make(KEY_MODE_NONE, []))


def test_ignore_mode(tmp_path):
    key = tmp_path / "key"
    key.write_bytes(b"keydata")
    creds = resolve_credentials(make(KEY_MODE_IGNORE, ["pw"], str(key)))
    assert creds.password is None
    assert creds.key_file == str(key)


def test_missing_key_file(tmp_path):
    with pytest.raises(BadCredential, match="no keyfile found on disk"):
        resolve_credentials(make(KEY_MODE_PLAINTEXT, ["pw"], str(tmp_path / "missing")))


def test_build_credentials():
    assert build_credentials("pw", "").password == "pw"
    with pytest.raises(BadCredential):
        build_credentials("", "")
    with pytest.raises(BadCredential):
        build_credentials(None, None)
