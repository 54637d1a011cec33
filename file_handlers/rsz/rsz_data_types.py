"""
Field value types for RSZ instances.

Every field value is one of four tags: scalar (numbers, vectors, GUIDs, raw
fixed-size bytes), string, array, or reference (object or user-data ordinal).
The tag and the on-disk encoding are chosen from the field descriptor by
get_type_codec(), so no per-class code is needed.
"""

import struct
import uuid
from types import MappingProxyType

from file_handlers.rsz.rsz_errors import FieldTypeError, StructuralError

UNASSIGNED = -1


class _Unavailable:
    """Returned by field access on an instance whose class could not be resolved."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNAVAILABLE"


UNAVAILABLE = _Unavailable()


class ScalarData:
    """
    Fixed-size value. ``padding`` keeps bytes the layout reserves past the value
    (vec3 in 16 bytes). Decoded values also remember their on-disk bytes, which
    are written back as long as ``value`` is the object that was decoded (NaN
    payloads do not survive a float round trip).
    """
    tag = "scalar"

    def __init__(self, value=0, orig_type: str = "", padding: bytes = b""):
        self.value = value
        self.orig_type = orig_type
        self.padding = padding
        self._raw = None

    def remember_raw(self, raw: bytes):
        self._raw = (self.value, raw)

    @property
    def raw(self):
        """The decoded bytes, or None once ``value`` has been replaced."""
        if self._raw is not None and self._raw[0] is self.value:
            return self._raw[1]
        return None

    def copy(self):
        clone = type(self)(self.value, self.orig_type, self.padding)
        clone._raw = self._raw
        return clone

    def __eq__(self, other):
        return type(other) is type(self) and other.value == self.value and other.padding == self.padding

    def __repr__(self):
        return f"{type(self).__name__}({self.value!r})"


class GuidData(ScalarData):

    def __init__(self, value: uuid.UUID = None, orig_type: str = "", padding: bytes = b""):
        super().__init__(value if value is not None else uuid.UUID(int=0), orig_type, padding)


class RawBytesData(ScalarData):

    def __init__(self, value: bytes = b"", orig_type: str = "", padding: bytes = b""):
        super().__init__(bytes(value), orig_type, padding)


class StringData:
    tag = "string"

    def __init__(self, value: str = "", orig_type: str = "", terminated: bool = True, encoding: str = "utf-16-le"):
        self.value = value
        self.orig_type = orig_type
        # A zero count on disk means no terminator either
        self.terminated = terminated and bool(value)
        self.encoding = encoding

    def copy(self):
        clone = type(self)(self.value, self.orig_type, encoding=self.encoding)
        clone.terminated = self.terminated
        return clone

    def __eq__(self, other):
        return isinstance(other, StringData) and other.value == self.value and other.encoding == self.encoding

    def __repr__(self):
        return f"StringData({self.value!r})"


class ObjectData:
    """Reference to another instance of the same block, stored as its ordinal."""
    tag = "reference"

    def __init__(self, value: int = 0, orig_type: str = "", target=None):
        self.value = value
        self.orig_type = orig_type
        # Bound instance while the graph is being rebuilt or cloned; ordinal is authoritative otherwise
        self.target = target

    def copy(self):
        return type(self)(self.value, self.orig_type, self.target)

    def __eq__(self, other):
        return type(other) is type(self) and other.value == self.value

    def __repr__(self):
        return f"{type(self).__name__}({self.value})"


class UserDataData(ObjectData):
    pass


class ArrayData:
    """Array container that stores values and element type"""
    tag = "array"

    def __init__(self, values=None, element_class=None, orig_type=""):
        self.values = values if values is not None else []
        self.element_class = element_class
        self.orig_type = orig_type

    def copy(self):
        return ArrayData([v.copy() for v in self.values], self.element_class, self.orig_type)

    def __len__(self):
        return len(self.values)

    def __eq__(self, other):
        return isinstance(other, ArrayData) and other.values == self.values

    def __repr__(self):
        return f"ArrayData({self.values!r})"


def iter_references(value):
    """Yield every reference inside a field value (the value itself, or array elements)."""
    if isinstance(value, ObjectData):
        yield value
    elif isinstance(value, ArrayData):
        for element in value.values:
            if isinstance(element, ObjectData):
                yield element


########################################
# Codecs
########################################

SCALAR_FORMATS = MappingProxyType({
    "bool": "<B",
    "s8": "<b",
    "u8": "<B",
    "s16": "<h",
    "u16": "<H",
    "s32": "<i",
    "int": "<i",
    "u32": "<I",
    "uint": "<I",
    "enum": "<i",
    "s64": "<q",
    "u64": "<Q",
    "f32": "<f",
    "float": "<f",
    "f64": "<d",
    "vec2": "<2f",
    "float2": "<2f",
    "range": "<2f",
    "point": "<2f",
    "size": "<2f",
    "vec3": "<3f",
    "float3": "<3f",
    "vec4": "<4f",
    "float4": "<4f",
    "quaternion": "<4f",
    "keyframe": "<4f",
    "int2": "<2i",
    "int3": "<3i",
    "int4": "<4i",
    "uint2": "<2I",
    "uint3": "<3I",
    "rangei": "<2i",
    "position": "<3d",
    "color": "<4B",
    "mat4": "<16f",
    "obb": "<20f",
})

GUID_TYPES = frozenset({"guid", "gameobjectref"})
STRING_ENCODINGS = MappingProxyType({
    "string": "utf-16-le",
    "resource": "utf-16-le",
    "runtimetype": "utf-8",
})
REFERENCE_TYPES = MappingProxyType({
    "object": ObjectData,
    "userdata": UserDataData,
})


class ScalarCodec:
    element_class = ScalarData

    def __init__(self, field, fmt: str):
        self.field = field
        self.fmt = fmt
        self.value_size = struct.calcsize(fmt)
        self.pad_size = field.size - self.value_size
        self.components = len(struct.unpack(fmt, b"\x00" * self.value_size))
        self.is_bool = field.type == "bool"

    def decode(self, cursor):
        cursor.align(self.field.align)
        raw = cursor.read_bytes(self.value_size)
        values = struct.unpack(self.fmt, raw)
        if self.components == 1:
            values = values[0]
            if self.is_bool and values in (0, 1):
                values = bool(values)
        padding = cursor.read_bytes(self.pad_size) if self.pad_size else b""
        data = ScalarData(values, self.field.original_type, padding)
        data.remember_raw(raw)
        return data

    def encode(self, cursor, data):
        cursor.align_write(self.field.align)
        raw = data.raw
        if raw is not None and len(raw) == self.value_size:
            cursor.write_bytes(raw)
        else:
            values = data.value if self.components > 1 else (data.value,)
            cursor.write(self.fmt, *values)
        if self.pad_size:
            padding = data.padding[:self.pad_size]
            cursor.write_bytes(padding + b"\x00" * (self.pad_size - len(padding)))

    def wrap(self, value):
        if isinstance(value, ScalarData) and type(value) is ScalarData:
            value = value.value
        if self.components > 1:
            if not isinstance(value, (tuple, list)) or len(value) != self.components:
                raise FieldTypeError(
                    f"Field '{self.field.name}' expects {self.components} components, got {value!r}")
            value = tuple(value)
            checked = value
        else:
            checked = (value,)
        for component in checked:
            self._check_component(component)
        try:
            struct.pack(self.fmt, *checked)
        except (struct.error, OverflowError) as e:
            raise FieldTypeError(f"Field '{self.field.name}' cannot hold {value!r}: {e}") from e
        return ScalarData(value, self.field.original_type, b"\x00" * self.pad_size)

    def _check_component(self, component):
        if self.is_bool:
            if not isinstance(component, bool):
                raise FieldTypeError(f"Field '{self.field.name}' expects a bool, got {component!r}")
            return
        is_float = self.fmt[-1] in "fd"
        if isinstance(component, bool):
            raise FieldTypeError(f"Field '{self.field.name}' expects a number, got {component!r}")
        if is_float and not isinstance(component, (int, float)):
            raise FieldTypeError(f"Field '{self.field.name}' expects a float, got {component!r}")
        if not is_float and not isinstance(component, int):
            raise FieldTypeError(f"Field '{self.field.name}' expects an integer, got {component!r}")


class GuidCodec:
    element_class = GuidData

    def __init__(self, field):
        self.field = field
        self.pad_size = field.size - 16

    def decode(self, cursor):
        cursor.align(self.field.align)
        guid = uuid.UUID(bytes_le=cursor.read_bytes(16))
        padding = cursor.read_bytes(self.pad_size) if self.pad_size else b""
        return GuidData(guid, self.field.original_type, padding)

    def encode(self, cursor, data):
        cursor.align_write(self.field.align)
        cursor.write_bytes(data.value.bytes_le)
        if self.pad_size:
            cursor.write_bytes(data.padding.ljust(self.pad_size, b"\x00")[:self.pad_size])

    def wrap(self, value):
        if isinstance(value, GuidData):
            return value.copy()
        if isinstance(value, str):
            try:
                value = uuid.UUID(value)
            except ValueError as e:
                raise FieldTypeError(f"Field '{self.field.name}': invalid GUID {value!r}") from e
        if not isinstance(value, uuid.UUID):
            raise FieldTypeError(f"Field '{self.field.name}' expects a GUID, got {value!r}")
        return GuidData(value, self.field.original_type, b"\x00" * self.pad_size)


class RawBytesCodec:
    element_class = RawBytesData

    def __init__(self, field):
        self.field = field

    def decode(self, cursor):
        cursor.align(self.field.align)
        return RawBytesData(cursor.read_bytes(self.field.size), self.field.original_type)

    def encode(self, cursor, data):
        cursor.align_write(self.field.align)
        cursor.write_bytes(data.value)

    def wrap(self, value):
        if isinstance(value, RawBytesData):
            value = value.value
        if not isinstance(value, (bytes, bytearray)) or len(value) != self.field.size:
            raise FieldTypeError(f"Field '{self.field.name}' expects {self.field.size} raw bytes, got {value!r}")
        return RawBytesData(bytes(value), self.field.original_type)


class StringCodec:
    element_class = StringData

    def __init__(self, field, encoding: str):
        self.field = field
        self.encoding = encoding
        self.unit = 2 if encoding == "utf-16-le" else 1

    def decode(self, cursor):
        cursor.align(self.field.align)
        cursor.align(4)
        count = cursor.read_uint32()
        raw = cursor.read_bytes(count * self.unit)
        try:
            text = raw.decode(self.encoding, errors="surrogatepass")
        except UnicodeDecodeError as e:
            raise StructuralError(f"Field '{self.field.name}': invalid {self.encoding} string: {e}") from e
        terminated = text.endswith("\x00")
        if terminated:
            text = text[:-1]
        data = StringData(text, self.field.original_type, encoding=self.encoding)
        data.terminated = terminated
        return data

    def encode(self, cursor, data):
        cursor.align_write(self.field.align)
        cursor.align_write(4)
        text = data.value + ("\x00" if data.terminated else "")
        raw = text.encode(self.encoding, errors="surrogatepass")
        cursor.write_uint32(len(raw) // self.unit)
        cursor.write_bytes(raw)

    def wrap(self, value):
        if isinstance(value, StringData):
            value = value.value
        if not isinstance(value, str):
            raise FieldTypeError(f"Field '{self.field.name}' expects a string, got {value!r}")
        return StringData(value, self.field.original_type, encoding=self.encoding)


class ReferenceCodec:

    def __init__(self, field, element_class):
        self.field = field
        self.element_class = element_class
        self.pad_size = field.size - 4

    def decode(self, cursor):
        cursor.align(self.field.align)
        value = cursor.read_uint32()
        if self.pad_size > 0:
            cursor.read_bytes(self.pad_size)
        return self.element_class(value, self.field.original_type)

    def encode(self, cursor, data):
        cursor.align_write(self.field.align)
        cursor.write_uint32(data.value & 0xFFFFFFFF)
        if self.pad_size > 0:
            cursor.write_bytes(b"\x00" * self.pad_size)

    def wrap(self, value):
        if isinstance(value, ObjectData):
            if type(value) is not self.element_class:
                raise FieldTypeError(
                    f"Field '{self.field.name}' expects {self.element_class.__name__}, got {type(value).__name__}")
            return value.copy()
        if isinstance(value, int) and not isinstance(value, bool):
            if value < 0:
                raise FieldTypeError(f"Field '{self.field.name}': negative ordinal {value}")
            return self.element_class(value, self.field.original_type)
        if hasattr(value, "ordinal") and hasattr(value, "fields"):
            ordinal = value.ordinal if value.ordinal >= 0 else 0
            return self.element_class(ordinal, self.field.original_type, target=value)
        raise FieldTypeError(f"Field '{self.field.name}' expects an instance reference, got {value!r}")


class FieldCodec:
    """Decodes/encodes one field, array or not, with its element codec."""

    def __init__(self, field, element_codec):
        self.field = field
        self.element = element_codec

    @property
    def element_class(self):
        return self.element.element_class

    def decode(self, cursor):
        if self.field.array:
            cursor.align(4)
            count = cursor.read_uint32()
            values = [self.element.decode(cursor) for _ in range(count)]
            return ArrayData(values, self.element.element_class, self.field.original_type)
        return self.element.decode(cursor)

    def encode(self, cursor, data):
        if self.field.array:
            cursor.align_write(4)
            cursor.write_uint32(len(data.values))
            for element in data.values:
                self.element.encode(cursor, element)
        else:
            self.element.encode(cursor, data)

    def wrap(self, value):
        """Validate ``value`` against the field and return it as a tagged value."""
        if self.field.array:
            if isinstance(value, ArrayData):
                value = value.values
            if not isinstance(value, (list, tuple)):
                raise FieldTypeError(f"Field '{self.field.name}' is an array, got {value!r}")
            return ArrayData([self.element.wrap(v) for v in value], self.element.element_class,
                             self.field.original_type)
        if isinstance(value, ArrayData):
            raise FieldTypeError(f"Field '{self.field.name}' is not an array")
        return self.element.wrap(value)

    def default(self):
        if self.field.array:
            return ArrayData([], self.element.element_class, self.field.original_type)
        codec = self.element
        if isinstance(codec, ScalarCodec):
            zero = tuple([0] * codec.components) if codec.components > 1 else (False if codec.is_bool else 0)
            return ScalarData(zero, self.field.original_type, b"\x00" * codec.pad_size)
        if isinstance(codec, GuidCodec):
            return GuidData(uuid.UUID(int=0), self.field.original_type, b"\x00" * codec.pad_size)
        if isinstance(codec, StringCodec):
            return StringData("", self.field.original_type, encoding=codec.encoding)
        if isinstance(codec, ReferenceCodec):
            return codec.element_class(0, self.field.original_type)
        return RawBytesData(b"\x00" * self.field.size, self.field.original_type)


def get_type_codec(field) -> FieldCodec:
    """Pick the codec for a field descriptor. Unknown or mis-sized types fall back to raw bytes."""
    ftype = field.type
    if ftype in REFERENCE_TYPES:
        element = ReferenceCodec(field, REFERENCE_TYPES[ftype])
    elif ftype in STRING_ENCODINGS:
        element = StringCodec(field, STRING_ENCODINGS[ftype])
    elif ftype in GUID_TYPES and field.size >= 16:
        element = GuidCodec(field)
    elif ftype in SCALAR_FORMATS and struct.calcsize(SCALAR_FORMATS[ftype]) <= field.size:
        element = ScalarCodec(field, SCALAR_FORMATS[ftype])
    else:
        element = RawBytesCodec(field)
    return FieldCodec(field, element)
