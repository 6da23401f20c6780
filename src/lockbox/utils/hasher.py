import hashlib
from dataclasses import dataclass
from enum import Enum

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.utils.Entity import ALLOWED_FIELDS


class ValueMode(Enum):
    """What a query does with the stored values of an entity."""
    BLANK = "blank"      # never decrypt, every value is empty
    SECRET = "secret"    # raw plaintext
    JSON = "json"        # plaintext run through the hasher


@dataclass
class _Checksummable:
    value: str
    typeof: str


class Hasher:
    """
    Transforms raw field values for output.

    Created once per query, reset between entities. In JSON + hash mode
    it also gathers a short checksum of the entity's fields.
    """

    def __init__(self, mode: ValueMode, settings: Settings):
        json_mode = JSON_MODE_EMPTY
        if mode == ValueMode.JSON:
            json_mode = settings.get_string(JSON_MODE)

        self.is_raw = mode == ValueMode.SECRET or (mode == ValueMode.JSON and json_mode == JSON_MODE_PLAINTEXT)
        self.is_hashed = mode == ValueMode.JSON and json_mode == JSON_MODE_HASH
        self.is_checksum = self.is_hashed
        self.hash_length = settings.get_int(JSON_HASH_LENGTH) if self.is_hashed else 0
        self.checksum_to = max(self.hash_length, 1)
        self.required_length = (len(ALLOWED_FIELDS) + 2) * self.checksum_to
        self._checksums: list[_Checksummable] = []

    def reset(self) -> None:
        self._checksums = []

    def _digest(self, value: str) -> str:
        return hashlib.sha512(value.encode(UTF8)).hexdigest()

    def transform(self, value: str) -> str:
        """Return the output form of a raw value."""
        if self.is_raw:
            return value
        if self.is_hashed:
            digest = self._digest(value)
            if self.hash_length > 0:
                digest = digest[:self.hash_length]
            return digest
        return ""

    def add(self, field: str, value: str) -> bool:
        """
        Record a value for the checksum.

        Returns:
            True if checksums are being gathered.
        """
        if not self.is_checksum:
            return False
        if field and value:
            self._checksums.append(_Checksummable(self._digest(value)[:self.checksum_to], field[0]))
        return True

    def calculate(self, path: str) -> tuple[str, bool]:
        """
        Build the checksum for the current entity.

        The group path itself is included with the `d` tag, entries are
        ordered by tag and left padded with zeros to a fixed count.

        Returns:
            (checksum, True) in checksum mode, ("", False) otherwise.
        """
        if not self.is_checksum:
            return "", False
        if not self._checksums:
            return "", True
        self.add("d", path)
        ordered = sorted(self._checksums, key=lambda c: ord(c.typeof))
        values = [f"{c.value}{c.typeof}" for c in ordered]
        padding = "0" + "0" * self.checksum_to
        while len(values) < self.required_length:
            values.insert(0, padding)
        return f"[{' '.join(values)}]", True
