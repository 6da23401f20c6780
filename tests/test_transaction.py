import os

import pendulum
import pytest
from pykeepass import PyKeePass

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import BadCredential, BadField, CodecError, Conflict, LockboxError, NotFound, ReadOnly
from lockbox.utils.Entity import Entity, Field
from lockbox.utils.hasher import ValueMode
from lockbox.utils.kdbx_utils import MoveRequest, Transaction, open_store
from lockbox.utils.credentials import Credentials
from lockbox.utils.query_utils import QueryMode, QueryOptions, collect


def paths(tx, mode=QueryMode.LIST, criteria=""):
    return [e.path for e in collect(tx.query(QueryOptions(criteria=criteria, mode=mode)))]


def test_invalid_store(settings):
    settings.set(STORE, "")
    with pytest.raises(CodecError):
        Transaction(settings)
    settings.set(STORE, "file.txt")
    with pytest.raises(CodecError, match="kdbx"):
        Transaction(settings)


def test_load_requires_file(settings, tmp_path):
    with pytest.raises(CodecError, match="does not exist"):
        Transaction.load(str(tmp_path / "none.kdbx"), settings)


def test_missing_store_reads_empty(settings):
    tx = Transaction(settings)
    assert paths(tx) == []
    assert tx.get("a/b", ValueMode.SECRET) is None
    assert not os.path.exists(settings.store)


def test_write_then_read(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "hunter2"})
    entity = tx.get("a/b", ValueMode.SECRET)
    assert entity.value("password") == "hunter2"
    assert not os.path.exists(f"{settings.store}.tmp")


def test_notes_multiline_only(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {Field.NOTES: "line1\nline2"})
    assert tx.get("a/b", ValueMode.SECRET).value("notes") == "line1\nline2"
    with pytest.raises(BadField):
        tx.insert("a/b", {Field.PASSWORD: "x\ny"})


def test_empty_values_rejected(settings):
    tx = Transaction(settings)
    with pytest.raises(BadField):
        tx.insert("a/b", {})
    with pytest.raises(BadField):
        tx.insert("a/b", {"password": ""})
    with pytest.raises(BadField):
        tx.insert("a/b", {"username": "x"})


def test_insert_replaces_fields(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "one", "url": "http://x"})
    tx.insert("a/b", {"notes": "two"})
    assert tx.get("a/b", ValueMode.SECRET).values == {"notes": "two"}


def test_fields_coexist(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})
    existing = tx.get("a/b", ValueMode.SECRET).fields()
    existing[Field.URL] = "https://example.com"
    tx.insert("a/b", existing)
    assert tx.get("a/b", ValueMode.SECRET).values == {"password": "pw", "url": "https://example.com"}


def test_otp_stored_as_url(settings):
    tx = Transaction(settings)
    tx.insert("s", {"otp": "abc"})
    value = tx.get("s", ValueMode.SECRET).value("otp")
    assert value.startswith("otpauth://totp/lbissuer:lbaccount?")
    assert value.endswith("secret=abc")


def test_blank_mode_hides_values(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw", "notes": "n"})
    entity = tx.get("a/b", ValueMode.BLANK)
    assert entity.values == {"password": "", "notes": ""}


def test_modtime(settings):
    tx = Transaction(settings)
    before = pendulum.now().subtract(seconds=2)
    tx.insert("a/b", {"password": "pw"})
    modtime = pendulum.parse(tx.get("a/b", ValueMode.JSON).value("modtime"))
    assert modtime >= before

    settings.set(DEFAULT_MODTIME, "2006-01-02T15:04:05-07:00")
    tx.insert("a/c", {"password": "pw"})
    assert tx.get("a/c", ValueMode.JSON).value("modtime") == "2006-01-02T15:04:05-07:00"


def test_json_hash_values(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw", "url": "u"})
    for length in (0, 1, 12):
        settings.set(JSON_HASH_LENGTH, length)
        entity = tx.get("a/b", ValueMode.JSON)
        for key in ("password", "url"):
            value = entity.value(key)
            assert len(value) == (length or 128)
            assert all(c in "0123456789abcdef" for c in value)
        assert entity.value("checksum").startswith("[")


def test_query_order_and_modes(settings):
    tx = Transaction(settings)
    for path in ["b/z", "a/y", "a/x", "a/x/deep", "c"]:
        tx.insert(path, {"password": "pw"})
    assert paths(tx) == ["a/x", "a/x/deep", "a/y", "b/z", "c"]
    assert paths(tx, QueryMode.FIND, "x") == ["a/x", "a/x/deep"]
    assert paths(tx, QueryMode.EXACT, "a/y") == ["a/y"]
    assert paths(tx, QueryMode.GLOB, "a/?") == ["a/x", "a/y"]
    with pytest.raises(LockboxError, match="no query mode"):
        tx.query(QueryOptions())


def test_path_filter(settings):
    tx = Transaction(settings)
    for path in ["prod/db", "prod/web", "dev/db"]:
        tx.insert(path, {"password": "pw"})
    found = collect(tx.query(QueryOptions(mode=QueryMode.LIST, path_filter="db$")))
    assert [e.path for e in found] == ["dev/db", "prod/db"]


def test_get_conflict(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})

    def duplicate(kp):
        group = kp.find_groups(name="a", first=True)
        kp.add_entry(group, "b", "", "dup", force_creation=True)

    tx.change(duplicate)
    with pytest.raises(Conflict):
        tx.get("a/b", ValueMode.BLANK)


def test_unset_last_field_removes_entity(settings):
    tx = Transaction(settings)
    tx.insert("a/b/c", {"password": "pw", "url": "u"})
    tx.unset("a/b/c", Field.URL)
    assert tx.get("a/b/c", ValueMode.SECRET).values == {"password": "pw"}
    tx.unset("a/b/c", Field.PASSWORD)
    assert tx.get("a/b/c", ValueMode.BLANK) is None
    kp = open_store(settings.store, Credentials(password="pw"))
    assert "a" not in [g.name for g in kp.root_group.subgroups]
    with pytest.raises(NotFound):
        tx.unset("a/b/c", Field.PASSWORD)


def test_remove_glob(settings):
    tx = Transaction(settings)
    for path in ["a/b/one", "a/b/two", "a/c", "x/b/one"]:
        tx.insert(path, {"password": "pw"})
    tx.remove_all(tx.match_path("a/b/*"))
    assert paths(tx) == ["a/c", "x/b/one"]


def test_remove_missing(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})
    with pytest.raises(NotFound):
        tx.remove_all([Entity("a/b"), Entity("a/zzz")])
    assert paths(tx) == ["a/b"]


def test_move(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw", "notes": "n"})
    tx.insert("c/d", {"password": "old"})
    tx.move([MoveRequest(tx.get("a/b", ValueMode.BLANK), "c/d")])
    assert paths(tx) == ["c/d"]
    assert tx.get("c/d", ValueMode.SECRET).values == {"password": "pw", "notes": "n"}


def test_rekey(settings):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})
    tx.rekey("pw2", "")

    with pytest.raises(BadCredential):
        paths(Transaction(settings))
    settings.set(PASSWORD, ["pw2"])
    assert paths(Transaction(settings)) == ["a/b"]
    assert Transaction(settings).get("a/b", ValueMode.SECRET).value("password") == "pw"


def test_rekey_to_key_file(settings, tmp_path):
    key = tmp_path / "keyfile"
    key.write_bytes(b"0123456789abcdef0123456789abcdef")
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})
    tx.rekey(None, str(key))

    settings.set(PASSWORD_MODE, KEY_MODE_NONE)
    settings.set(PASSWORD, [])
    settings.set(KEY_FILE, str(key))
    assert paths(Transaction(settings)) == ["a/b"]


def test_readonly_blocks_mutation(settings):
    Transaction(settings).insert("a/b", {"password": "pw"})
    mtime = os.stat(settings.store).st_mtime_ns
    settings.set(READONLY, True)
    tx = Transaction(settings)
    entity = tx.get("a/b", ValueMode.BLANK)
    for action in (
        lambda: tx.insert("a/b", {"password": "x"}),
        lambda: tx.move([MoveRequest(entity, "c/d")]),
        lambda: tx.remove_all([entity]),
        lambda: tx.unset("a/b", Field.PASSWORD),
        lambda: tx.rekey("x", ""),
    ):
        with pytest.raises(ReadOnly, match="unable to alter database in readonly mode"):
            action()
    assert os.stat(settings.store).st_mtime_ns == mtime
    assert paths(tx) == ["a/b"]


def test_bad_file(settings):
    with open(settings.store, "wb") as f:
        f.write(b"not a kdbx file")
    with pytest.raises(CodecError):
        paths(Transaction(settings))


def test_failed_write_keeps_store(settings, monkeypatch):
    tx = Transaction(settings)
    tx.insert("a/b", {"password": "pw"})
    with open(settings.store, "rb") as f:
        before = f.read()

    def broken_save(self, *args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(PyKeePass, "save", broken_save)
    with pytest.raises(CodecError, match="disk full"):
        tx.insert("a/c", {"password": "pw"})

    with open(settings.store, "rb") as f:
        assert f.read() == before
    assert not os.path.exists(f"{settings.store}.tmp")
    assert paths(tx) == ["a/b"]
