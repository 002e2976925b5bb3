"""Exception types raised by the schema core.

Argument errors (a required entity passed as ``None``) are plain
``ValueError``; everything else derives from ``SchemaError``.
"""


class SchemaError(Exception):
    """Base class for schema model errors."""

    pass


class SerializationError(SchemaError):
    """Raised when a snapshot cannot be read or written.

    Covers unknown type discriminators, versions newer than the reader
    understands, and truncated or malformed input.
    """

    pass


class UnsupportedValueError(SchemaError):
    """Raised when an ingested code has no mapped counterpart.

    Example:
        >>> raise UnsupportedValueError("SN", "object type")
        Traceback (most recent call last):
        ...
        db_drift.errors.UnsupportedValueError: Unsupported object type: 'SN'
    """

    def __init__(self, value: object, kind: str) -> None:
        self.value = value
        self.kind = kind
        super().__init__(f"Unsupported {kind}: {value!r}")
