import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Callable

import pendulum
from pykeepass import PyKeePass, create_database
from pykeepass.exceptions import CredentialsError

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import BadCredential, BadField, CodecError, Conflict, NotFound, ReadOnly
from lockbox.utils.credentials import Credentials, build_credentials, resolve_credentials
from lockbox.utils.Entity import Entity, Field
from lockbox.utils.hasher import ValueMode
from lockbox.utils.path_utils import group_components
from lockbox.utils.query_utils import (
    FIELD_ATTRS, QueryMode, QueryOptions, collect, field_value, query,
)

logger = logging.getLogger(__name__)

READONLY_MESSAGE = "unable to alter database in readonly mode"


@dataclass
class MoveRequest:
    """Relocate `source` to the group path `destination`."""
    source: Entity
    destination: str


# ============================================================================
# Container helpers
# ============================================================================

def open_store(path: str, creds: Credentials) -> PyKeePass:
    """
    Decode a kdbx file fully into memory.

    Raises:
        BadCredential: If the password or key file does not match.
        CodecError: If the file can not be decoded, or it does not have
            exactly one root group.
    """
    try:
        kp = PyKeePass(path, password=creds.password, keyfile=creds.key_file)
    except CredentialsError:
        raise BadCredential("invalid password and/or key file")
    except Exception as e:
        logger.error(f"[{pendulum.now().to_iso8601_string()}] failed to open {path}: {e}\n")
        raise CodecError(f"unable to read database: {e}")

    roots = kp.tree.getroot().findall("Root/Group")
    if len(roots) != 1:
        raise CodecError("database has invalid root group count")
    return kp


def new_store(path: str, creds: Credentials) -> PyKeePass:
    """
    Create an empty in-memory database bound to `path`.

    Nothing is written to `path`, the caller commits.
    """
    with tempfile.TemporaryDirectory() as scratch:
        kp = create_database(
            os.path.join(scratch, f"new{STORE_SUFFIX}"),
            password=creds.password,
            keyfile=creds.key_file,
        )
    kp.filename = path
    return kp


def commit_store(kp: PyKeePass, path: str) -> None:
    """
    Write the database atomically over `path`.

    The encoded database goes to a sibling temp file, is fsynced and then
    renamed into place. On failure the temp file is removed and `path`
    is left untouched.

    Raises:
        CodecError: If encoding or writing fails.
    """
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "wb") as f:
            kp.save(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except Exception as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        logger.error(f"[{pendulum.now().to_iso8601_string()}] failed to write {path}: {e}\n")
        raise CodecError(f"unable to write database: {e}")


def find_group(kp: PyKeePass, names: list[str], create: bool = False):
    """Walk (optionally creating) a chain of group names below the root."""
    group = kp.root_group
    for name in names:
        child = next((g for g in group.subgroups if g.name == name), None)
        if child is None:
            if not create:
                return None
            child = kp.add_group(group, name)
        group = child
    return group


def find_entries(group, title: str) -> list:
    return [e for e in group.entries if e.title == title]


def prune_groups(kp: PyKeePass, names: list[str]) -> None:
    """Remove empty groups along a chain, deepest first, never the root."""
    while names:
        group = find_group(kp, names)
        if group is None or group.entries or group.subgroups:
            return
        kp.delete_group(group)
        names = names[:-1]


def read_fields(entry) -> dict[Field, str]:
    values = {}
    for field in Field:
        raw = field_value(entry, field)
        if raw:
            values[field] = raw
    return values


# ============================================================================
# Transaction
# ============================================================================

class Transaction:
    """
    A single open-mutate-commit cycle against the configured store.

    Every mutating call opens the store, applies its change in memory and
    commits it atomically. Reads never write, a missing store reads as
    empty.
    """

    def __init__(self, settings: Settings, readonly: bool | None = None):
        store = settings.store
        if not store.strip():
            raise CodecError("no store set")
        if not store.endswith(STORE_SUFFIX):
            raise CodecError(f"should use a {STORE_SUFFIX} extension")
        self.settings = settings
        self.file = store
        self.readonly = settings.readonly if readonly is None else readonly

    @classmethod
    def load(cls, path: str, settings: Settings) -> "Transaction":
        """
        Transaction for an existing file.

        Raises:
            CodecError: If the file does not exist or is not a kdbx path.
        """
        if not os.path.exists(path):
            raise CodecError(f"invalid file, does not exist: {path}")
        scoped = Settings(dict(settings.items()))
        scoped.set(STORE, path)
        return cls(scoped)

    @property
    def exists(self) -> bool:
        return os.path.exists(self.file)

    # ---------------------------------------------------------------- core

    def read(self, callback: Callable):
        """Call `callback(root_group)` on the decoded store, or with None if missing."""
        if not self.exists:
            return callback(None)
        kp = open_store(self.file, resolve_credentials(self.settings))
        return callback(kp.root_group)

    def change(self, callback: Callable, creds: Credentials | None = None) -> None:
        """
        Apply `callback(kp)` to the store and commit.

        Args:
            callback: Mutates the PyKeePass instance in place.
            creds: Credentials to open with, resolved from settings if None.

        Raises:
            ReadOnly: If the transaction is readonly, before any file access.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)
        creds = creds or resolve_credentials(self.settings)
        if self.exists:
            kp = open_store(self.file, creds)
        else:
            kp = new_store(self.file, creds)
        callback(kp)
        commit_store(kp, self.file)

    def _modtime(self) -> str:
        configured = self.settings.get_string(DEFAULT_MODTIME)
        if configured:
            return configured
        return pendulum.now().to_iso8601_string()

    def _write_entity(self, kp: PyKeePass, group_path: str, values: dict[Field, str]) -> None:
        parents, title = group_components(group_path)
        group = find_group(kp, parents, create=True)
        for entry in find_entries(group, title):
            kp.delete_entry(entry)
        entry = kp.add_entry(group, title, "", "", force_creation=True)
        for field, value in values.items():
            setattr(entry, FIELD_ATTRS[field], value)
        entry.set_custom_property(MODTIME_KEY, self._modtime())

    def _remove_entity(self, kp: PyKeePass, group_path: str) -> bool:
        parents, title = group_components(group_path)
        group = find_group(kp, parents)
        if group is None:
            return False
        entries = find_entries(group, title)
        for entry in entries:
            kp.delete_entry(entry)
        prune_groups(kp, parents)
        return bool(entries)

    def _source_fields(self, kp: PyKeePass, group_path: str) -> dict[Field, str]:
        parents, title = group_components(group_path)
        group = find_group(kp, parents)
        entries = find_entries(group, title) if group is not None else []
        if not entries:
            raise NotFound(f"unable to find entity: {group_path}")
        return read_fields(entries[0])

    # ---------------------------------------------------------- mutations

    def insert(self, group_path: str, values: dict) -> None:
        """
        Replace the fields of the entity at `group_path`.

        Args:
            group_path: Group path of the entity.
            values: Field (or field name) to value. otp values are
                stored as otpauth URLs.

        Raises:
            BadPath, BadField: On invalid path, field or value.
            ReadOnly: In readonly mode.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)
        group_components(group_path)
        if not values:
            raise BadField("empty secrets not allowed")

        fields = {}
        for key, value in values.items():
            field = key if isinstance(key, Field) else Field.parse(key)
            if not value:
                raise BadField("empty secrets not allowed")
            value = field.check(value)
            if field == Field.OTP:
                value = self.settings.totp_url(value.strip())
            fields[field] = value

        self.change(lambda kp: self._write_entity(kp, group_path, fields))

    def move(self, requests: list[MoveRequest]) -> None:
        """
        Move entities to new group paths, fields preserved.

        Any entity already at a destination is replaced.

        Raises:
            NotFound: If a source no longer exists.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)
        for request in requests:
            group_components(request.destination)

        def apply(kp: PyKeePass):
            for request in requests:
                values = self._source_fields(kp, request.source.path)
                self._remove_entity(kp, request.source.path)
                self._remove_entity(kp, request.destination)
                self._write_entity(kp, request.destination, values)

        self.change(apply)

    def remove(self, entity: Entity) -> None:
        self.remove_all([entity])

    def remove_all(self, entities: list[Entity]) -> None:
        """
        Remove entities, cascading empty groups.

        Raises:
            NotFound: If any entity is missing, nothing is written then.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)
        if not entities:
            raise NotFound("no entities given")

        def apply(kp: PyKeePass):
            for entity in entities:
                if not self._remove_entity(kp, entity.path):
                    raise NotFound(f"unable to find entity: {entity.path}")

        self.change(apply)

    def unset(self, group_path: str, field: Field) -> None:
        """
        Remove one field, the entity goes when it was the last one.

        Raises:
            NotFound: If the entity or field is absent.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)

        def apply(kp: PyKeePass):
            values = self._source_fields(kp, group_path)
            if field not in values:
                raise NotFound(f"field not set: {field.name_lower}")
            del values[field]
            self._remove_entity(kp, group_path)
            if values:
                self._write_entity(kp, group_path, values)

        self.change(apply)

    def rekey(self, password: str | None, key_file: str | None) -> None:
        """
        Re-encode the store with new credentials, content unchanged.

        Raises:
            BadCredential: If the new pair is invalid.
            CodecError: If the store does not exist.

        Security Notes:
            - The old credentials are still resolved from settings to
              open the store, the new ones only apply to the write.
        """
        if self.readonly:
            raise ReadOnly(READONLY_MESSAGE)
        if not self.exists:
            raise CodecError(f"invalid file, does not exist: {self.file}")
        new_creds = build_credentials(password, key_file)

        def apply(kp: PyKeePass):
            kp.password = new_creds.password
            kp.keyfile = new_creds.key_file

        self.change(apply)

    # -------------------------------------------------------------- reads

    def query(self, options: QueryOptions):
        return query(self.read, options, self.settings)

    def get(self, group_path: str, value_mode: ValueMode) -> Entity | None:
        """
        Exact lookup of one entity.

        Raises:
            Conflict: If more than one entity shares the path.
        """
        entities = collect(self.query(QueryOptions(criteria=group_path, mode=QueryMode.EXACT, values=value_mode)))
        if len(entities) > 1:
            raise Conflict("too many entities matched")
        return entities[0] if entities else None

    def match_path(self, pattern: str) -> list[Entity]:
        """All entities whose group path globs against `pattern`."""
        return collect(self.query(QueryOptions(criteria=pattern, mode=QueryMode.GLOB)))
