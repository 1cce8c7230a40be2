#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
HeaderStore -- the header fields of an SSDP message.

Field names are case-insensitive, each name may carry several values, and the
order in which distinct names were first added is the order in which they are
serialized.
"""

from __future__ import annotations

from .internal_types import *
from .exceptions import SsdpHeaderError
from .util import CaseInsensitiveDict, is_http_token

class HeaderStore:
    """A case-insensitive, multi-valued, order-preserving mapping of header field names to values."""

    _fields: CaseInsensitiveDict[List[str]]
    """Values by field name. The case of the name as first added is preserved."""

    def __init__(self, items: Optional[Iterable[Tuple[str, str]]]=None):
        self._fields = CaseInsensitiveDict()
        if items is not None:
            for name, value in items:
                self.add(name, value)

    def __str__(self) -> str:
        return f"HeaderStore({list(self.items())})"

    def __repr__(self) -> str:
        return str(self)

    @staticmethod
    def _validate(name: str, value: str) -> None:
        if not isinstance(name, str) or not is_http_token(name):
            raise SsdpHeaderError(f"Invalid header field name: {name!r}")
        if not isinstance(value, str):
            raise SsdpHeaderError(f"Header field {name} value must be a str, got {type(value).__name__}")
        if '\r' in value or '\n' in value:
            # Folded values are allowed, but only as a line break followed by whitespace
            for line in value.replace('\r\n', '\n').split('\n')[1:]:
                if len(line) == 0 or line[0] not in ' \t':
                    raise SsdpHeaderError(f"Header field {name} value contains a line break: {value!r}")

    def add(self, name: str, value: str) -> None:
        """Append a value to a field. The field is created after all existing fields
           if it does not exist yet.

           Raises SsdpHeaderError if name is not a valid field name or value is not a str.
        """
        self._validate(name, value)
        values = self._fields.get(name)
        if values is None:
            self._fields[name] = [value]
        else:
            values.append(value)

    def replace(self, name: str, value: str) -> None:
        """Remove all values of a field, then add a single value. The field moves
           after all other fields."""
        self._validate(name, value)
        self.remove(name)
        self._fields[name] = [value]

    def remove(self, name: str) -> bool:
        """Remove all values of a field. Returns False if the field did not exist."""
        if name in self._fields:
            del self._fields[name]
            return True
        return False

    def contains(self, name: str) -> bool:
        return name in self._fields

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._fields

    def first(self, name: str, fallback: Optional[str]=None) -> Optional[str]:
        """Returns the first value of a field, or fallback if the field does not exist."""
        values = self._fields.get(name)
        if not values:
            return fallback
        return values[0]

    def get_values(self, name: str) -> List[str]:
        """Returns a copy of all values of a field, in insertion order. [] if the field does not exist."""
        return list(self._fields.get(name, []))

    def names(self) -> List[str]:
        """Returns the field names in serialization order."""
        return list(self._fields.keys())

    def items(self) -> Iterator[Tuple[str, str]]:
        """Yields one (name, value) tuple per stored value, in serialization order."""
        for name, values in self._fields.items():
            for value in values:
                yield (name, value)

    def clear(self) -> None:
        self._fields.clear()

    def copy(self) -> HeaderStore:
        return HeaderStore(self.items())

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, HeaderStore):
            return NotImplemented
        return ([(n.lower(), v) for n, v in self.items()] ==
                [(n.lower(), v) for n, v in other.items()])
