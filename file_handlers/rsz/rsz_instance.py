import logging

from file_handlers.rsz.rsz_data_types import (
    UNASSIGNED,
    UNAVAILABLE,
    ArrayData,
    ObjectData,
    get_type_codec,
    iter_references,
)
from file_handlers.rsz.rsz_errors import FieldTypeError

logger = logging.getLogger(__name__)

_codec_cache = {}


def get_class_codecs(class_def):
    """Field codecs for a class, in schema order. Cached per definition object."""
    entry = _codec_cache.get(id(class_def))
    if entry is None or entry[0] is not class_def:
        entry = (class_def, tuple(get_type_codec(field) for field in class_def.fields))
        _codec_cache[id(class_def)] = entry
    return entry[1]


class RszInstance:
    """
    One class-typed instance of an RSZ block.

    ``ordinal`` is the instance's slot in the block's instance directory.
    Ordinal 0 is the null instance. An instance whose type id is not in the
    class registry is opaque: its fields are unavailable and its payload, if
    any, is carried as raw bytes.
    """

    def __init__(self, class_def=None, ordinal: int = UNASSIGNED, type_id: int = None, crc: int = None):
        self.class_def = class_def
        self.type_id = type_id if type_id is not None else (class_def.type_id if class_def else 0)
        self.crc = crc if crc is not None else (class_def.crc if class_def else 0)
        self.ordinal = ordinal
        self.fields = {}
        self.user_data = None
        self.raw_payload = None
        self.modified = False

    @classmethod
    def null(cls):
        return cls(None, 0, 0, 0)

    @classmethod
    def create(cls, class_def):
        """New unassigned instance with every field at its zero value."""
        instance = cls(class_def)
        for codec in get_class_codecs(class_def):
            instance.fields[codec.field.name] = codec.default()
        return instance

    @property
    def is_null(self) -> bool:
        return self.type_id == 0 or self.ordinal == 0

    @property
    def opaque(self) -> bool:
        return self.class_def is None and not self.is_null

    @property
    def has_payload(self) -> bool:
        """Whether the instance occupies bytes in the block's payload region."""
        return not self.is_null and self.user_data is None

    @property
    def name(self) -> str:
        if self.class_def is not None:
            return self.class_def.name
        return "NULL" if self.is_null else f"0x{self.type_id:08X}"

    def __repr__(self):
        return f"<RszInstance #{self.ordinal} {self.name}>"

    def decode(self, cursor, class_def=None):
        if class_def is not None:
            self.class_def = class_def
        self.fields = {}
        for codec in get_class_codecs(self.class_def):
            self.fields[codec.field.name] = codec.decode(cursor)

    def encode(self, cursor):
        if self.raw_payload is not None:
            cursor.write_bytes(self.raw_payload)
            return
        if self.class_def is None:
            return
        for codec in get_class_codecs(self.class_def):
            name = codec.field.name
            value = self.fields.get(name)
            if value is None:
                value = codec.default()
                self.fields[name] = value
            codec.encode(cursor, value)

    def get_field(self, name: str):
        if self.class_def is None:
            return UNAVAILABLE
        if name not in self.fields:
            if self.class_def.field(name) is None:
                raise KeyError(f"{self.name} has no field '{name}'")
            return UNAVAILABLE
        return self.fields[name]

    def set_field(self, name: str, value):
        if self.class_def is None:
            raise FieldTypeError(f"Cannot write field '{name}' of opaque instance {self!r}")
        for codec in get_class_codecs(self.class_def):
            if codec.field.name == name:
                self.fields[name] = codec.wrap(value)
                self.modified = True
                return self.fields[name]
        raise KeyError(f"{self.name} has no field '{name}'")

    def references(self):
        """Every object/user-data reference held by this instance's fields."""
        for value in self.fields.values():
            yield from iter_references(value)

    def clone(self, memo=None):
        """
        Deep copy. Referenced sub-instances bound to the references are copied
        too, once per ``memo``. The copy has no ordinal and no user-data entry
        until a container assigns them.
        """
        if memo is None:
            memo = {}
        existing = memo.get(id(self))
        if existing is not None:
            return existing

        copy = RszInstance(self.class_def, UNASSIGNED, self.type_id, self.crc)
        memo[id(self)] = copy
        if self.raw_payload is not None:
            copy.raw_payload = self.raw_payload
        for name, value in self.fields.items():
            copy.fields[name] = _clone_value(value, memo)
        return copy


def _clone_value(value, memo):
    if isinstance(value, ArrayData):
        return ArrayData([_clone_value(v, memo) for v in value.values], value.element_class, value.orig_type)
    if isinstance(value, ObjectData):
        clone = value.copy()
        if value.target is not None:
            clone.target = value.target.clone(memo)
            clone.value = 0
        return clone
    return value.copy()
