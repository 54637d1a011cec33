"""
Error taxonomy for the RSZ codec and object graph.

ReadError subclasses abort a read outright. SchemaError is never raised by
the block reader: it is recorded in the block's diagnostics list so the rest
of the container stays usable.
"""


class RszError(Exception):
    pass


class ReadError(RszError):
    """A container could not be read."""


class StructuralError(ReadError):
    """Bad magic or an impossible header."""


class IOBoundaryError(ReadError, ValueError):
    """Access past the end of the buffer (or of a sub-view)."""


class SchemaError(RszError):
    """A type id that the loaded class registry does not know."""

    def __init__(self, ordinal: int, type_id: int, message: str = ""):
        self.ordinal = ordinal
        self.type_id = type_id
        super().__init__(message or f"Instance {ordinal}: unknown type id 0x{type_id:08X}")


class RszReferenceError(RszError):
    """Dangling parent id or ordinal while building or rebuilding a tree."""


class FieldTypeError(RszError, TypeError):
    """A field write that does not match the field's declared type."""


class ContainerStateError(RszError):
    pass
