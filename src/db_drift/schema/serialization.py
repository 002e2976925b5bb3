"""Symmetric, versioned (de)serialization of the schema model.

Every entity implements a single ``de_serialize(rw)`` method that lists its
fields once.  The same method both writes and reads: in write mode each
``read_write_*`` call stores the value it is given and returns it unchanged,
in read mode it ignores the given value and returns what was read.  Because
there is only one field list per entity, the read order can never drift from
the write order.

Two formats share that contract:

- ``BinaryReadWriter``: compact little-endian stream (``struct``).
- ``StructuredReadWriter``: nested JSON-compatible dicts keyed by field name.

Polymorphic list elements are prefixed with a type discriminator (the class
name).  The reader turns it back into an instance through a resolver passed
at the call site, never through a global registry.

Usage:
    from db_drift.schema.serialization import dump_catalog, load_catalog

    data = dump_catalog(catalog, "binary")
    restored = load_catalog(data)
    assert restored == catalog
"""

from __future__ import annotations

import io
import json
import logging
import struct
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from db_drift.errors import SerializationError

if TYPE_CHECKING:
    from db_drift.schema.models import CatalogSchema

logger = logging.getLogger(__name__)

# Placeholder for string fields of entities created empty for deserialization
DUMMY_STRING = "<dummy>"

BINARY_MAGIC = b"DBDRIFT"
FORMAT_VERSION = 1
SNAPSHOT_FORMATS = ("binary", "json")


class Serializable(Protocol):
    """Anything that can walk its fields through an ``ObjectReadWriter``."""

    def de_serialize(self, rw: ObjectReadWriter) -> None: ...


S = TypeVar("S", bound=Serializable)
E = TypeVar("E", bound=Enum)

Resolver = Callable[[str], Serializable]


def resolve_exact(cls: type[S]) -> Callable[[str], S]:
    """Resolver for homogeneous lists: accepts only ``cls.__name__``."""

    def _resolve(type_name: str) -> S:
        if type_name != cls.__name__:
            raise SerializationError(
                f"Unexpected list element type '{type_name}', "
                f"expected '{cls.__name__}'"
            )
        return cls()

    return _resolve


def resolve_from(table: Mapping[str, Callable[[], S]]) -> Callable[[str], S]:
    """Resolver for polymorphic lists backed by an explicit dispatch table.

    Args:
        table: Maps each accepted discriminator to a factory of empty
            instances.  Anything not in the table is rejected.
    """

    def _resolve(type_name: str) -> S:
        factory = table.get(type_name)
        if factory is None:
            raise SerializationError(
                f"Unknown list element type '{type_name}' "
                f"(known: {', '.join(sorted(table))})"
            )
        return factory()

    return _resolve


# ============================================================================
# Read/write base
# ============================================================================


class ObjectReadWriter(ABC):
    """Direction-agnostic field walker.

    Subclasses implement the primitive ``_put``/``_get`` pair plus the
    scope hooks used for nested objects and list elements.
    """

    def __init__(self, reading: bool):
        self.reading = reading

    # ----- primitives -----

    @abstractmethod
    def _put(self, name: str, kind: str, value: Any) -> None: ...

    @abstractmethod
    def _get(self, name: str, kind: str) -> Any: ...

    @abstractmethod
    def _begin_object(self, name: str) -> None: ...

    @abstractmethod
    def _end_object(self, name: str) -> None: ...

    @abstractmethod
    def _begin_list(self, name: str, count: int | None) -> int: ...

    @abstractmethod
    def _begin_item(self, index: int, type_name: str | None) -> str: ...

    @abstractmethod
    def _end_item(self, index: int) -> None: ...

    @abstractmethod
    def _end_list(self, name: str) -> None: ...

    def _read_write(self, name: str, kind: str, value: Any) -> Any:
        if self.reading:
            return self._get(name, kind)
        self._put(name, kind, value)
        return value

    # ----- public field operations -----

    def read_write_version(self, current: int) -> int:
        """Write ``current`` or read the stored version.

        Raises:
            SerializationError: If the stored version is newer than
                ``current`` (the reader does not know how to upgrade it).
        """
        version = self._read_write("$version", "u8", current)
        if version > current:
            raise SerializationError(
                f"Unsupported version {version} (reader knows up to {current})"
            )
        return version

    def read_write_str(self, name: str, value: str) -> str:
        return self._read_write(name, "str", value)

    def read_write_str_n(self, name: str, value: str | None) -> str | None:
        return self._read_write(name, "str?", value)

    def read_write_int32(self, name: str, value: int) -> int:
        return self._read_write(name, "i32", value)

    def read_write_int64(self, name: str, value: int) -> int:
        return self._read_write(name, "i64", value)

    def read_write_bool(self, name: str, value: bool) -> bool:
        return self._read_write(name, "bool", value)

    def read_write_enum(self, name: str, value: E, enum_cls: type[E]) -> E:
        """Store an enum by its value (``str`` or ``int``)."""
        kind = "str" if isinstance(next(iter(enum_cls)).value, str) else "i32"
        raw = self._read_write(name, kind, value.value)
        try:
            return enum_cls(raw)
        except ValueError as e:
            raise SerializationError(
                f"Invalid {enum_cls.__name__} value {raw!r} for field '{name}'"
            ) from e

    def read_write_object(self, name: str, value: S, factory: Callable[[], S]) -> S:
        """Walk a nested entity; in read mode a fresh ``factory()`` is filled."""
        target = factory() if self.reading else value
        self._begin_object(name)
        target.de_serialize(self)
        self._end_object(name)
        return target

    def read_write_list(
        self,
        name: str,
        items: list[S],
        resolver: Callable[[str], S],
    ) -> list[S]:
        """Walk a list whose elements carry their own type discriminator.

        Args:
            name: Field name.
            items: Items to write (ignored when reading).
            resolver: Turns a discriminator into an empty instance.  When
                writing, every element's type name must be accepted by it
                too, so nothing is written that could not be read back.

        Returns:
            ``items`` when writing, a new list when reading.

        Raises:
            SerializationError: If an element's type is rejected by
                ``resolver``.
        """
        if not self.reading:
            for item in items:
                resolver(type(item).__name__)
            self._begin_list(name, len(items))
            for index, item in enumerate(items):
                self._begin_item(index, type(item).__name__)
                item.de_serialize(self)
                self._end_item(index)
            self._end_list(name)
            return items

        count = self._begin_list(name, None)
        result: list[S] = []
        for index in range(count):
            type_name = self._begin_item(index, None)
            item = resolver(type_name)
            item.de_serialize(self)
            self._end_item(index)
            result.append(item)
        self._end_list(name)
        return result


# ============================================================================
# Binary format
# ============================================================================


_STRUCTS = {
    "u8": struct.Struct("<B"),
    "i32": struct.Struct("<i"),
    "i64": struct.Struct("<q"),
    "bool": struct.Struct("<?"),
}


class BinaryReadWriter(ObjectReadWriter):
    """Little-endian binary stream.

    Field names are not stored; order alone identifies fields.  Strings are
    an ``i32`` byte length followed by UTF-8 bytes, nullable strings get a
    leading presence flag.
    """

    def __init__(self, stream: io.BytesIO, reading: bool):
        super().__init__(reading)
        self._stream = stream

    def _write_packed(self, kind: str, value: Any) -> None:
        try:
            self._stream.write(_STRUCTS[kind].pack(value))
        except struct.error as e:
            raise SerializationError(f"Cannot write {kind} value {value!r}: {e}") from e

    def _read_exact(self, size: int) -> bytes:
        data = self._stream.read(size)
        if len(data) != size:
            raise SerializationError("Unexpected end of binary snapshot")
        return data

    def _read_packed(self, kind: str) -> Any:
        packer = _STRUCTS[kind]
        return packer.unpack(self._read_exact(packer.size))[0]

    def _put(self, name: str, kind: str, value: Any) -> None:
        if kind == "str?":
            self._write_packed("bool", value is not None)
            if value is not None:
                self._put(name, "str", value)
            return
        if kind == "str":
            if not isinstance(value, str):
                raise SerializationError(f"Field '{name}' must be a string, got {value!r}")
            encoded = value.encode("utf-8")
            self._write_packed("i32", len(encoded))
            self._stream.write(encoded)
            return
        self._write_packed(kind, value)

    def _get(self, name: str, kind: str) -> Any:
        if kind == "str?":
            if not self._read_packed("bool"):
                return None
            return self._get(name, "str")
        if kind == "str":
            length = self._read_packed("i32")
            if length < 0:
                raise SerializationError(f"Negative string length for field '{name}'")
            try:
                return self._read_exact(length).decode("utf-8")
            except UnicodeDecodeError as e:
                raise SerializationError(f"Invalid UTF-8 in field '{name}'") from e
        return self._read_packed(kind)

    def _begin_object(self, name: str) -> None:
        pass

    def _end_object(self, name: str) -> None:
        pass

    def _begin_list(self, name: str, count: int | None) -> int:
        if self.reading:
            count = self._read_packed("i32")
            if count < 0:
                raise SerializationError(f"Negative item count for list '{name}'")
            return count
        self._write_packed("i32", count)
        return count

    def _begin_item(self, index: int, type_name: str | None) -> str:
        return self._read_write("$type", "str", type_name)

    def _end_item(self, index: int) -> None:
        pass

    def _end_list(self, name: str) -> None:
        pass


# ============================================================================
# Structured (JSON) format
# ============================================================================


class StructuredReadWriter(ObjectReadWriter):
    """Nested dict representation, one dict per entity.

    Base-class fields and subclass fields share the entity's dict, so each
    version byte gets its own key (``$version``, ``$version.1``, ...) in the
    order they are walked.
    """

    def __init__(self, root: dict[str, Any] | None = None, reading: bool = False):
        super().__init__(reading)
        self.root: dict[str, Any] = root if root is not None else {}
        self._scopes: list[dict[str, Any]] = [self.root]
        self._version_counters: list[int] = [0]
        self._lists: list[list[Any]] = []

    @property
    def _scope(self) -> dict[str, Any]:
        return self._scopes[-1]

    def _key(self, name: str) -> str:
        if name != "$version":
            return name
        counter = self._version_counters[-1]
        self._version_counters[-1] += 1
        return name if counter == 0 else f"{name}.{counter}"

    def _push(self, scope: dict[str, Any]) -> None:
        self._scopes.append(scope)
        self._version_counters.append(0)

    def _pop(self) -> None:
        self._scopes.pop()
        self._version_counters.pop()

    def _put(self, name: str, kind: str, value: Any) -> None:
        self._scope[self._key(name)] = value

    def _get(self, name: str, kind: str) -> Any:
        key = self._key(name)
        try:
            value = self._scope[key]
        except KeyError as e:
            raise SerializationError(f"Missing field '{key}'") from e
        if value is None and kind == "str?":
            return None
        expected = {
            "u8": int,
            "i32": int,
            "i64": int,
            "bool": bool,
            "str": str,
            "str?": str,
        }[kind]
        # bool is an int subclass; reject it where a number is expected
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise SerializationError(f"Field '{key}' has invalid value {value!r}")
        return value

    def _begin_object(self, name: str) -> None:
        if self.reading:
            nested = self._scope.get(name)
            if not isinstance(nested, dict):
                raise SerializationError(f"Missing object '{name}'")
        else:
            nested = {}
            self._scope[name] = nested
        self._push(nested)

    def _end_object(self, name: str) -> None:
        self._pop()

    def _begin_list(self, name: str, count: int | None) -> int:
        if self.reading:
            items = self._scope.get(name)
            if not isinstance(items, list):
                raise SerializationError(f"Missing list '{name}'")
        else:
            items = []
            self._scope[name] = items
        self._lists.append(items)
        return len(items)

    def _begin_item(self, index: int, type_name: str | None) -> str:
        items = self._lists[-1]
        if self.reading:
            item = items[index]
            if not isinstance(item, dict):
                raise SerializationError(f"List element {index} is not an object")
        else:
            item = {}
            items.append(item)
        self._push(item)
        return self._read_write("$type", "str", type_name)

    def _end_item(self, index: int) -> None:
        self._pop()

    def _end_list(self, name: str) -> None:
        self._lists.pop()


# ============================================================================
# Catalog snapshots
# ============================================================================


def dump_catalog(catalog: CatalogSchema, fmt: str = "binary") -> bytes:
    """Serialize a catalog into snapshot bytes.

    Args:
        catalog: Catalog to serialize.  It is only read.
        fmt: ``"binary"`` or ``"json"``.

    Raises:
        ValueError: If ``fmt`` is not a known format.
        SerializationError: If an object sits in a list that cannot hold
            its type, such as a table-valued function among the functions.
    """
    if fmt == "binary":
        stream = io.BytesIO()
        stream.write(BINARY_MAGIC)
        stream.write(bytes([FORMAT_VERSION]))
        rw = BinaryReadWriter(stream, reading=False)
        catalog.de_serialize(rw)
        data = stream.getvalue()
    elif fmt == "json":
        rw = StructuredReadWriter(reading=False)
        catalog.de_serialize(rw)
        document = {"format": "db-drift", "version": FORMAT_VERSION, "catalog": rw.root}
        data = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
    else:
        raise ValueError(
            f"Unknown snapshot format '{fmt}' (expected one of {', '.join(SNAPSHOT_FORMATS)})"
        )

    logger.debug("Serialized catalog %s as %s (%d bytes)", catalog.full_name, fmt, len(data))
    return data


def load_catalog(data: bytes) -> CatalogSchema:
    """Deserialize snapshot bytes produced by ``dump_catalog``.

    The format is detected from the content.

    Raises:
        SerializationError: If the data is not a valid snapshot.
    """
    from db_drift.schema.models import CatalogSchema

    catalog = CatalogSchema()

    if data.startswith(BINARY_MAGIC):
        stream = io.BytesIO(data)
        stream.seek(len(BINARY_MAGIC))
        rw = BinaryReadWriter(stream, reading=True)
        version = rw._read_packed("u8")
        if version > FORMAT_VERSION:
            raise SerializationError(f"Unsupported snapshot format version {version}")
        catalog.de_serialize(rw)
        if stream.read(1):
            raise SerializationError("Trailing data after binary snapshot")
        return catalog

    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError("Data is neither a binary nor a JSON snapshot") from e

    if not isinstance(document, dict) or document.get("format") != "db-drift":
        raise SerializationError("JSON document is not a db-drift snapshot")
    version = document.get("version")
    if not isinstance(version, int) or version > FORMAT_VERSION:
        raise SerializationError(f"Unsupported snapshot format version {version!r}")
    root = document.get("catalog")
    if not isinstance(root, dict):
        raise SerializationError("Snapshot has no catalog object")

    catalog.de_serialize(StructuredReadWriter(root, reading=True))
    return catalog


def save_snapshot(path: str | Path, catalog: CatalogSchema, fmt: str = "binary") -> Path:
    """Write a catalog snapshot to ``path`` and return the path."""
    snapshot_path = Path(path)
    snapshot_path.write_bytes(dump_catalog(catalog, fmt))
    logger.debug("Saved snapshot %s", snapshot_path)
    return snapshot_path


def load_snapshot(path: str | Path) -> CatalogSchema:
    """Read a catalog snapshot written by ``save_snapshot``.

    Raises:
        FileNotFoundError: If the file does not exist.
        SerializationError: If the file is not a valid snapshot.
    """
    snapshot_path = Path(path)
    if not snapshot_path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {snapshot_path}")
    return load_catalog(snapshot_path.read_bytes())
