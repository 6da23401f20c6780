import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import LockboxError
from lockbox.utils.Entity import Entity, Field
from lockbox.utils.hasher import Hasher, ValueMode
from lockbox.utils.path_utils import glob, new_path

# container attribute for each field
FIELD_ATTRS = {
    Field.NOTES: "notes",
    Field.OTP: "otp",
    Field.PASSWORD: "password",
    Field.URL: "url",
}


class QueryMode(Enum):
    """How entities are selected."""
    LIST = "list"      # every entity
    FIND = "find"      # group path contains the criteria
    EXACT = "exact"    # group path equals the criteria
    GLOB = "glob"      # group path matches the criteria as a shell glob


@dataclass
class QueryOptions:
    criteria: str = ""
    mode: QueryMode | None = None
    values: ValueMode = ValueMode.BLANK
    path_filter: str = ""


QuerySeq = Iterator[tuple[Entity | None, LockboxError | None]]


def field_value(entry, field: Field) -> str:
    """Read a field from a container entry, '' when unset."""
    return getattr(entry, FIELD_ATTRS[field]) or ""


def modtime_value(entry) -> str:
    return entry.get_custom_property(MODTIME_KEY) or ""


def walk(root) -> Iterator[tuple[str, object]]:
    """
    Depth-first traversal below the root group.

    Subgroups are visited before the entries of a group. Yields the
    entity path (ancestor group names plus the entry title) and the
    backing entry.
    """
    def visit(offset: str, group):
        for sub in group.subgroups:
            yield from visit(new_path(offset, sub.name) if offset else sub.name, sub)
        for entry in group.entries:
            title = entry.title or ""
            yield (new_path(offset, title) if offset else title), entry

    yield from visit("", root)


def select(root, options: QueryOptions) -> list[tuple[str, object]]:
    """
    Pick matching (path, entry) pairs, sorted by path unless EXACT.

    Raises:
        LockboxError: If no query mode is given or the path filter is
            not a valid regular expression.
    """
    if options.mode is None:
        raise LockboxError("no query mode specified")
    path_filter = None
    if options.path_filter:
        try:
            path_filter = re.compile(options.path_filter)
        except re.error as e:
            raise LockboxError(f"invalid filter: {e}")

    selected = []
    for path, entry in walk(root):
        if options.mode == QueryMode.FIND and options.criteria not in path:
            continue
        if options.mode == QueryMode.EXACT and path != options.criteria:
            continue
        if options.mode == QueryMode.GLOB and not glob(options.criteria, path):
            continue
        if path_filter is not None and not path_filter.search(path):
            continue
        selected.append((path, entry))

    if options.mode != QueryMode.EXACT:
        # sorted() is stable, equal paths keep traversal order
        selected = sorted(selected, key=lambda item: item[0])
    return selected


def materialize(selected: list[tuple[str, object]], options: QueryOptions, settings: Settings) -> QuerySeq:
    """
    Lazily turn selected entries into entities.

    In BLANK mode values are never copied out, every field present
    is reported with an empty value.
    """
    hasher = Hasher(options.values, settings)
    for path, entry in selected:
        values = {}
        hasher.reset()
        for field in Field:
            raw = field_value(entry, field)
            if not raw:
                continue
            if options.values == ValueMode.BLANK:
                values[field.name_lower] = ""
                continue
            values[field.name_lower] = hasher.transform(raw)
            hasher.add(field.name_lower, raw)

        if options.values == ValueMode.JSON:
            values[MODTIME_OUTPUT] = modtime_value(entry)
            checksum, ok = hasher.calculate(path)
            if ok:
                values[CHECKSUM_KEY] = checksum
        yield Entity(path=path, values=values), None


def collect(seq: QuerySeq) -> list[Entity]:
    """
    Gather a query sequence into a list.

    Raises:
        LockboxError: The first error produced by the sequence.
    """
    entities = []
    for entity, err in seq:
        if err is not None:
            raise err
        entities.append(entity)
    return entities


def query(reader: Callable, options: QueryOptions, settings: Settings) -> QuerySeq:
    """
    Run a query against a store.

    Args:
        reader: Callable taking a callback, which is invoked with the
            decoded root group (or None when the store does not exist).
        options: Query criteria, mode and value mode.
        settings: Active settings, used by the hasher.

    Returns:
        A lazy, single-pass sequence of (entity, error) pairs.
    """
    if options.mode is None:
        raise LockboxError("no query mode specified")
    selected = reader(lambda root: select(root, options) if root is not None else [])
    return materialize(selected, options, settings)
