"""
RSZ block codec.

A block is a self-contained region: header, object table, instance
directory, user-data directory and the instance payloads. All offsets are
relative to the block start. Containers hand the block a child cursor
anchored at their data offset.

Layout written by RszBlock.write:

    header (48)
    object table        u32 * object_count
    instance directory  {type_id u32, crc u32} * instance_count
    align 16
    user-data directory modern: {instance_id, type_id, path_offset u64} + strings
                        legacy: {instance_id, type_id, path_hash, data_size, rsz_offset u64}
                                align 16, nested blocks each padded to 16
    align 16
    instance payloads   ordinal order, field-aligned relative to block start
"""

import logging

from file_handlers.rsz.rsz_errors import RszReferenceError, SchemaError, StructuralError
from file_handlers.rsz.rsz_game_profiles import EMBEDDED_USERDATA_SCHEMA_LIMIT
from file_handlers.rsz.rsz_instance import RszInstance
from utils.binary_handler import BinaryCursor

logger = logging.getLogger(__name__)

RSZ_MAGIC = 0x5A5352  # "RSZ\0"
DEFAULT_RSZ_VERSION = 16


class RszHeader:
    SIZE = 48
    FORMAT = "<4I4Q"

    def __init__(self):
        self.magic = RSZ_MAGIC
        self.version = DEFAULT_RSZ_VERSION
        self.object_count = 0
        self.instance_count = 0
        self.userdata_count = 0
        self.instance_offset = 0
        self.data_offset = 0
        self.userdata_offset = 0

    def read(self, cursor: BinaryCursor):
        (self.magic,
         self.version,
         self.object_count,
         self.instance_count,
         self.userdata_count,
         self.instance_offset,
         self.data_offset,
         self.userdata_offset) = cursor.read(self.FORMAT)
        if self.magic != RSZ_MAGIC:
            raise StructuralError(f"Bad RSZ magic 0x{self.magic:08X} (expected 0x{RSZ_MAGIC:08X})")

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT,
                     self.magic,
                     self.version,
                     self.object_count,
                     self.instance_count,
                     self.userdata_count,
                     self.instance_offset,
                     self.data_offset,
                     self.userdata_offset)


class RszUserDataInfo:
    """User data stored in an external file, referenced by path (schema version >= 67)."""
    SIZE = 16
    embedded = False

    def __init__(self, instance_id: int = 0, type_id: int = 0, path: str = ""):
        self.instance_id = instance_id
        self.type_id = type_id
        self.path = path

    def read(self, cursor: BinaryCursor, registry=None, schema_version=None):
        self.instance_id, self.type_id, path_offset = cursor.read("<IIQ")
        self.path = cursor.read_wstring_at(path_offset)

    def write(self, cursor: BinaryCursor):
        cursor.write("<II", self.instance_id, self.type_id)
        cursor.defer_string(self.path)

    def copy(self):
        return RszUserDataInfo(self.instance_id, self.type_id, self.path)

    def __repr__(self):
        return f"<RszUserDataInfo #{self.instance_id} {self.path!r}>"


class RszEmbeddedUserDataInfo:
    """User data embedded as a nested RSZ block (schema version < 67)."""
    SIZE = 24
    FORMAT = "<4IQ"
    embedded = True

    def __init__(self, instance_id: int = 0, type_id: int = 0, path_hash: int = 0, block=None):
        self.instance_id = instance_id
        self.type_id = type_id
        self.path_hash = path_hash
        self.data_size = 0
        self.rsz_offset = 0
        self.block = block

    def read(self, cursor: BinaryCursor, registry=None, schema_version=None):
        (self.instance_id,
         self.type_id,
         self.path_hash,
         self.data_size,
         self.rsz_offset) = cursor.read(self.FORMAT)
        # Nested block parsed right here, bounded by its declared size
        child = cursor.with_base(self.rsz_offset, self.data_size or None)
        self.block = RszBlock.read(child, registry, schema_version)

    def write_entry(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT, self.instance_id, self.type_id, self.path_hash,
                     self.data_size, self.rsz_offset)

    def copy(self):
        clone = RszEmbeddedUserDataInfo(self.instance_id, self.type_id, self.path_hash,
                                        self.block.copy() if self.block is not None else None)
        return clone

    def __repr__(self):
        return f"<RszEmbeddedUserDataInfo #{self.instance_id} hash=0x{self.path_hash:08X}>"


class RszBlock:

    def __init__(self, registry=None, schema_version: int = 71):
        self.registry = registry
        self.schema_version = schema_version
        self.header = RszHeader()
        self.object_table = []
        self.instances = [RszInstance.null()]
        self.userdata_infos = []
        self.diagnostics = []

    @property
    def embedded_userdata(self) -> bool:
        return self.schema_version < EMBEDDED_USERDATA_SCHEMA_LIMIT

    @property
    def instance_count(self) -> int:
        return len(self.instances)

    ########################################
    # Reading
    ########################################

    @classmethod
    def read(cls, cursor: BinaryCursor, registry, schema_version: int) -> "RszBlock":
        block = cls(registry, schema_version)
        block._read(cursor)
        return block

    def _read(self, cursor: BinaryCursor):
        header = self.header
        header.read(cursor)

        self.object_table = [cursor.read_uint32() for _ in range(header.object_count)]

        self._read_instance_directory(cursor)
        self._read_userdata_directory(cursor)
        self._read_instance_payloads(cursor)

        logger.debug("RSZ block: %d objects, %d instances, %d userdata, %d diagnostics",
                     len(self.object_table), len(self.instances), len(self.userdata_infos),
                     len(self.diagnostics))

    def _read_instance_directory(self, cursor):
        cursor.seek(self.header.instance_offset)
        self.instances = []
        for ordinal in range(self.header.instance_count):
            type_id, crc = cursor.read("<II")
            if ordinal == 0 or type_id == 0:
                self.instances.append(RszInstance(None, ordinal, type_id, crc))
                continue
            class_def = self.registry.get_class(type_id) if self.registry is not None else None
            if class_def is None:
                self._diagnose(SchemaError(ordinal, type_id))
            self.instances.append(RszInstance(class_def, ordinal, type_id, crc))

    def _read_userdata_directory(self, cursor):
        cursor.seek(self.header.userdata_offset)
        info_class = RszEmbeddedUserDataInfo if self.embedded_userdata else RszUserDataInfo
        self.userdata_infos = []
        for _ in range(self.header.userdata_count):
            info = info_class()
            info.read(cursor, self.registry, self.schema_version)
            self.userdata_infos.append(info)

        for info in self.userdata_infos:
            if not 0 < info.instance_id < len(self.instances):
                logger.warning("User data entry points at missing instance %d", info.instance_id)
                continue
            instance = self.instances[info.instance_id]
            if instance.user_data is not None:
                logger.warning("Instance %d has more than one user data entry", info.instance_id)
                continue
            instance.user_data = info

    def _read_instance_payloads(self, cursor):
        cursor.seek(self.header.data_offset)
        lost_after = None
        for instance in self.instances[1:]:
            if not instance.has_payload:
                continue
            if lost_after is not None:
                # Payload position unknown once an undecodable instance precedes it
                instance.class_def = None
                self._diagnose(SchemaError(instance.ordinal, instance.type_id,
                                           f"Instance {instance.ordinal}: payload follows undecodable "
                                           f"instance {lost_after}"))
                continue
            if instance.class_def is None:
                instance.raw_payload = cursor.read_bytes(cursor.limit - cursor.tell)
                lost_after = instance.ordinal
                continue
            instance.decode(cursor)

    def _diagnose(self, error: SchemaError):
        logger.warning("%s", error)
        self.diagnostics.append(error)

    ########################################
    # Writing
    ########################################

    def write(self, cursor: BinaryCursor):
        """Write the block at the cursor's base. The cursor ends at the block's end."""
        header = self.header
        cursor.write_bytes(b"\x00" * RszHeader.SIZE)

        for ordinal in self.object_table:
            cursor.write("<I", ordinal)

        instance_offset = cursor.tell
        for instance in self.instances:
            cursor.write("<II", instance.type_id, instance.crc)

        cursor.align_write(16)
        userdata_offset = cursor.tell
        if self.embedded_userdata:
            self._write_embedded_userdata(cursor)
        else:
            for info in self.userdata_infos:
                info.write(cursor)
            cursor.flush_strings()

        cursor.align_write(16)
        data_offset = cursor.tell
        for instance in self.instances[1:]:
            if instance.has_payload:
                instance.encode(cursor)
        end = cursor.tell

        header.magic = RSZ_MAGIC
        header.object_count = len(self.object_table)
        header.instance_count = len(self.instances)
        header.userdata_count = len(self.userdata_infos)
        header.instance_offset = instance_offset
        header.data_offset = data_offset
        header.userdata_offset = userdata_offset
        cursor.seek(0)
        header.write(cursor)
        cursor.seek(end)

    def _write_embedded_userdata(self, cursor):
        entry_positions = []
        for info in self.userdata_infos:
            entry_positions.append(cursor.tell)
            info.write_entry(cursor)
        cursor.align_write(16)

        for position, info in zip(entry_positions, self.userdata_infos):
            info.rsz_offset = cursor.tell
            child = cursor.with_base(cursor.tell)
            info.block.write(child)
            info.data_size = child.tell
            cursor.skip(info.data_size)
            cursor.align_write(16)
            cursor.write_at(position, RszEmbeddedUserDataInfo.FORMAT, info.instance_id, info.type_id,
                            info.path_hash, info.data_size, info.rsz_offset)

    def to_bytes(self) -> bytes:
        cursor = BinaryCursor()
        self.write(cursor)
        return cursor.get_bytes()

    def copy(self) -> "RszBlock":
        """Independent copy made by re-reading the serialized form."""
        return RszBlock.read(BinaryCursor(self.to_bytes()), self.registry, self.schema_version)

    ########################################
    # Lookup and mutation
    ########################################

    def resolve(self, reference):
        """Instance a reference (or a bare ordinal) points at; None for the null ordinal."""
        ordinal = reference if isinstance(reference, int) else reference.value
        if ordinal == 0:
            return None
        if not 0 < ordinal < len(self.instances):
            raise RszReferenceError(f"Ordinal {ordinal} is outside the instance directory ({len(self.instances)})")
        return self.instances[ordinal]

    def get_object_instance(self, object_index: int) -> RszInstance:
        if not 0 <= object_index < len(self.object_table):
            raise RszReferenceError(f"Object index {object_index} is outside the object table ({len(self.object_table)})")
        return self.resolve(self.object_table[object_index])

    def bind_references(self, instances=None, only_unbound: bool = False):
        """
        Attach the target instance to every reference so ordinals can be
        reassigned safely. With ``only_unbound`` references that already carry
        a target (cloned or freshly assigned ones) are left alone.
        """
        for instance in (self.instances if instances is None else instances):
            for reference in instance.references():
                if only_unbound and (reference.target is not None or reference.value == 0):
                    continue
                reference.target = self.resolve(reference.value)

    def add_instance(self, instance: RszInstance, user_data=None) -> int:
        """Append an instance to the directory; returns its ordinal."""
        instance.ordinal = len(self.instances)
        self.instances.append(instance)
        if user_data is not None:
            user_data.instance_id = instance.ordinal
            instance.user_data = user_data
            self.userdata_infos.append(user_data)
        return instance.ordinal

    def replace_tables(self, object_table, instances):
        """
        Install a rebuilt object table and instance directory. References must
        be bound (see bind_references) before ordinals are reassigned.
        """
        for ordinal, instance in enumerate(instances):
            instance.ordinal = ordinal
        for instance in instances:
            for reference in instance.references():
                reference.value = reference.target.ordinal if reference.target is not None else 0
        self.instances = list(instances)
        self.object_table = list(object_table)

        userdata_infos = []
        for instance in self.instances:
            if instance.user_data is not None:
                instance.user_data.instance_id = instance.ordinal
                userdata_infos.append(instance.user_data)
        self.userdata_infos = userdata_infos


def read_rsz_block(data: bytes, registry, schema_version: int, offset: int = 0) -> RszBlock:
    """Read a block directly from a byte string."""
    return RszBlock.read(BinaryCursor(data).with_base(offset), registry, schema_version)
