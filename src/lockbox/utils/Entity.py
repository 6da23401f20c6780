from dataclasses import dataclass, field
from enum import Enum

from lockbox.exceptions import BadField


class Field(Enum):
    """
    The closed set of fields an entity may carry.

    The value is the canonical key used inside the kdbx container;
    `name_lower` is the form used on the command line and in output.
    """
    NOTES = "Notes"
    OTP = "otp"
    PASSWORD = "Password"
    URL = "URL"

    @property
    def name_lower(self) -> str:
        return self.value.lower()

    @property
    def allows_multiline(self) -> bool:
        return self is Field.NOTES

    @classmethod
    def parse(cls, name: str) -> "Field":
        """
        Case-insensitive lookup of a field by name.

        Raises:
            BadField: If the name is not an allowed field.
        """
        lowered = name.lower()
        for item in cls:
            if item.name_lower == lowered:
                return item
        raise BadField(f"'{name}' is not an allowed field name")

    def check(self, value: str) -> str:
        """
        Validate a value for this field.

        Raises:
            BadField: If a single-line field is given a multi-line value.
        """
        if not self.allows_multiline and "\n" in value:
            raise BadField(f"{self.name_lower} can NOT be multi-line")
        return value


ALLOWED_FIELDS = [f.name_lower for f in Field]


@dataclass
class Entity:
    """
    A single record at a group path.

    `values` maps lowercase field names (plus `modtime` and `checksum`
    in JSON output) to strings.
    """
    path: str
    values: dict[str, str] = field(default_factory=dict)

    def __repr__(self):
        return (
            f"Entity(path={self.path}, "
            f"fields={sorted(self.values)})"
        )

    def value(self, key: str) -> str | None:
        return self.values.get(key.lower())

    def has(self, key: str) -> bool:
        return key.lower() in self.values

    def fields(self) -> dict[Field, str]:
        """
        Field-typed view of the stored values.

        Keys that are not fields (modtime, checksum) are skipped.
        """
        typed = {}
        for key, val in self.values.items():
            if key in ALLOWED_FIELDS:
                typed[Field.parse(key)] = val
        return typed
