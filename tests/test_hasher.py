import hashlib

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.utils.hasher import Hasher, ValueMode


def digest(value):
    return hashlib.sha512(value.encode()).hexdigest()


def json_settings(mode=JSON_MODE_HASH, length=1):
    s = Settings()
    s.set(JSON_MODE, mode)
    s.set(JSON_HASH_LENGTH, length)
    return s


def test_raw_and_blank():
    s = Settings()
    assert Hasher(ValueMode.SECRET, s).transform("abc") == "abc"
    assert Hasher(ValueMode.BLANK, s).transform("abc") == ""
    assert Hasher(ValueMode.JSON, json_settings(JSON_MODE_PLAINTEXT)).transform("abc") == "abc"
    assert Hasher(ValueMode.JSON, json_settings(JSON_MODE_EMPTY)).transform("abc") == ""


def test_hash_lengths():
    assert Hasher(ValueMode.JSON, json_settings(length=0)).transform("abc") == digest("abc")
    assert len(digest("abc")) == 128
    hashed = Hasher(ValueMode.JSON, json_settings(length=10)).transform("abc")
    assert hashed == digest("abc")[:10]
    assert hashed == hashed.lower()


def test_checksum_only_in_hash_mode():
    hasher = Hasher(ValueMode.JSON, json_settings(JSON_MODE_PLAINTEXT))
    assert not hasher.add("password", "abc")
    assert hasher.calculate("a/b") == ("", False)


def test_checksum_empty_entity():
    hasher = Hasher(ValueMode.JSON, json_settings())
    assert hasher.calculate("a/b") == ("", True)


def test_checksum_layout():
    hasher = Hasher(ValueMode.JSON, json_settings(length=1))
    hasher.add("password", "abc")
    hasher.add("notes", "xyz")
    checksum, ok = hasher.calculate("a/b")
    assert ok
    items = checksum.strip("[]").split(" ")
    # (4 fields + 2) * 1 items, left padded
    assert len(items) == 6
    assert items[:3] == ["00", "00", "00"]
    assert items[3] == digest("a/b")[:1] + "d"
    assert items[4] == digest("xyz")[:1] + "n"
    assert items[5] == digest("abc")[:1] + "p"


def test_checksum_reset():
    hasher = Hasher(ValueMode.JSON, json_settings(length=2))
    hasher.add("url", "u")
    hasher.reset()
    assert hasher.calculate("a") == ("", True)
