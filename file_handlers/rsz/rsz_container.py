"""
Container base shared by the USR, PFB and SCN files.

A container owns one RSZ block plus its own header tables (resources, user
data paths, game object records). It moves through the states below; only
structural edits (tree changes flagged with mark_dirty) require a rebuild
before the next write. Field edits on existing instances can be written
straight away.

    UNLOADED -> READING -> LOADED -> TREE_BUILT -> DIRTY -> REBUILDING -> WRITABLE -> WRITTEN
"""

import logging
import os
from enum import Enum

from file_handlers.rsz.rsz_block import RszBlock
from file_handlers.rsz.rsz_errors import ContainerStateError, RszError, StructuralError
from file_handlers.rsz.rsz_game_profiles import GameProfile, get_profile
from file_handlers.rsz.rsz_object_graph import build_object_tree, rebuild_flat_tables
from utils.binary_handler import BinaryCursor

logger = logging.getLogger(__name__)


class ContainerState(Enum):
    UNLOADED = "unloaded"
    READING = "reading"
    LOADED = "loaded"
    TREE_BUILT = "tree_built"
    DIRTY = "dirty"
    REBUILDING = "rebuilding"
    WRITABLE = "writable"
    WRITTEN = "written"


class ResourceInfo:
    """Resource path table entry: a u64 offset to a wide string, 0 for no path."""
    SIZE = 8

    def __init__(self, path: str = ""):
        self.path = path

    def read(self, cursor: BinaryCursor):
        offset = cursor.read_uint64()
        self.path = cursor.read_wstring_at(offset) if offset else ""
        return self

    def write(self, cursor: BinaryCursor):
        if self.path:
            cursor.defer_string(self.path)
        else:
            cursor.write_uint64(0)

    def __repr__(self):
        return f"<ResourceInfo {self.path!r}>"


class UserdataInfo:
    """Container-level user data file entry: type id, layout hash and path."""
    SIZE = 16

    def __init__(self, type_id: int = 0, crc: int = 0, path: str = ""):
        self.type_id = type_id
        self.crc = crc
        self.path = path

    def read(self, cursor: BinaryCursor):
        self.type_id, self.crc, offset = cursor.read("<IIQ")
        self.path = cursor.read_wstring_at(offset) if offset else ""
        return self

    def write(self, cursor: BinaryCursor):
        cursor.write("<II", self.type_id, self.crc)
        if self.path:
            cursor.defer_string(self.path)
        else:
            cursor.write_uint64(0)

    def __repr__(self):
        return f"<UserdataInfo 0x{self.type_id:08X} {self.path!r}>"


class RszContainer:
    """Base class; subclasses implement the header layout in _read/_write."""

    MAGIC = b""
    KIND = ""

    def __init__(self, profile, registry=None, data: bytes = None, filepath: str = "",
                 nested_components_in_object_table: bool = True):
        self.profile = profile if isinstance(profile, GameProfile) else get_profile(profile)
        self.registry = registry
        self.filepath = filepath
        self.nested_components_in_object_table = nested_components_in_object_table
        self.rsz = None
        self.resource_infos = []
        self.userdata_infos = []
        self.state = ContainerState.UNLOADED
        self.last_error = None
        self.last_rebuild = None
        self._data = data
        self._roots = None
        self._structure_dirty = False

    def __repr__(self):
        return f"<{type(self).__name__} {self.filepath or '<memory>'} {self.state.value}>"

    @property
    def schema_version(self) -> int:
        return self.profile.schema_version

    @property
    def diagnostics(self) -> list:
        return list(self.rsz.diagnostics) if self.rsz is not None else []

    ########################################
    # Reading
    ########################################

    def read(self, data: bytes = None):
        """Parse ``data`` (or the bytes/file given at construction). Raises ReadError on failure."""
        if data is None:
            data = self._data
        if data is None:
            if not self.filepath:
                raise ContainerStateError("Nothing to read: no data and no file path")
            with open(self.filepath, "rb") as f:
                data = f.read()

        self.state = ContainerState.READING
        self.last_error = None
        self._roots = None
        self._structure_dirty = False
        try:
            cursor = BinaryCursor(data)
            self._read(cursor)
        except RszError as e:
            logger.error("Failed to read %s: %s", self.filepath or self.KIND, e)
            self.rsz = None
            self.state = ContainerState.UNLOADED
            self.last_error = e
            raise

        self.state = ContainerState.LOADED
        if self.rsz.diagnostics:
            logger.warning("%s read with %d diagnostics", self.filepath or self.KIND, len(self.rsz.diagnostics))
        return self

    def _check_magic(self, magic: bytes):
        if magic != self.MAGIC:
            raise StructuralError(f"Not a {self.KIND.upper()} file: magic {magic!r}, expected {self.MAGIC!r}")

    def _read_rsz(self, cursor: BinaryCursor, data_offset: int):
        self.rsz = RszBlock.read(cursor.with_base(data_offset), self.registry, self.schema_version)

    def _read(self, cursor: BinaryCursor):
        raise NotImplementedError

    ########################################
    # Tree
    ########################################

    def _require_loaded(self):
        if self.state in (ContainerState.UNLOADED, ContainerState.READING, ContainerState.REBUILDING):
            raise ContainerStateError(f"Container is {self.state.value}")

    def game_object_infos(self) -> list:
        """Tree linkage records in file order; empty for containers without a tree."""
        return []

    def root_objects(self) -> list:
        """Root GameObjectNodes, building the tree on first use."""
        self._require_loaded()
        if self._roots is None:
            self.rsz.bind_references()
            try:
                self._roots = build_object_tree(
                    self.rsz.instances, self.rsz.object_table, self.game_object_infos(),
                    nested_components_in_object_table=self.nested_components_in_object_table)
            except RszError as e:
                self.last_error = e
                raise
            if self.state == ContainerState.LOADED:
                self.state = ContainerState.TREE_BUILT
        return self._roots

    def mark_dirty(self):
        """Flag a structural edit of the tree; write() is refused until rebuild()."""
        self.root_objects()
        self._structure_dirty = True
        self.state = ContainerState.DIRTY

    def is_dirty(self) -> bool:
        if self._structure_dirty:
            return True
        return self.rsz is not None and any(instance.modified for instance in self.rsz.instances)

    def _root_instances(self) -> list:
        """Object-table roots kept by a rebuild in addition to the tree."""
        return []

    def rebuild(self):
        """
        Regenerate the object table, instance directory and tree records from
        the current tree. Returns the RebuildResult, whose pruned_count tells
        how many unreachable instances were dropped (see rebuild_count() for
        just the number).
        """
        roots = self.root_objects()
        previous_state = self.state
        saved_ids = [(node.info, node.info.object_id, node.info.parent_id, node.info.component_count)
                     for node in self._tree_nodes(roots)]
        self.state = ContainerState.REBUILDING
        try:
            self.rsz.bind_references(only_unbound=True)
            self.rsz.bind_references(self._tree_instances(roots), only_unbound=True)
            root_instances = self._root_instances()
            before = self._before_rebuild()
            result = rebuild_flat_tables(roots, self.rsz.instances,
                                         nested_components_in_object_table=self.nested_components_in_object_table,
                                         root_instances=root_instances)
            self._check_rebuild(result, before)
        except RszError as e:
            for info, object_id, parent_id, component_count in saved_ids:
                info.object_id, info.parent_id = object_id, parent_id
                if not info.is_folder:
                    info.component_count = component_count
            self.state = previous_state
            self.last_error = e
            raise

        self.rsz.replace_tables(result.object_table, result.instances)
        self._sync_userdata_infos()
        self._after_rebuild(result, before)

        self._structure_dirty = False
        self.state = ContainerState.WRITABLE
        self.last_rebuild = result
        logger.info("Rebuilt %s: %d objects, %d instances, %d pruned",
                    self.filepath or self.KIND, len(result.object_table), len(result.instances),
                    result.pruned_count)
        return result

    def rebuild_count(self) -> int:
        """rebuild() returning only the number of pruned instances."""
        return self.rebuild().pruned_count

    @staticmethod
    def _tree_nodes(roots):
        return [node for root in roots for node in root.walk()]

    @classmethod
    def _tree_instances(cls, roots):
        instances = []
        for node in cls._tree_nodes(roots):
            if node.instance is not None:
                instances.append(node.instance)
            instances.extend(node.components)
        return instances

    def _sync_userdata_infos(self):
        """
        Match the container's user data file table to the block: one entry per
        distinct (type id, path), existing entries first in their old order.
        Embedded (legacy) user data has no paths and leaves the table alone.
        """
        if self.rsz.embedded_userdata:
            return
        wanted = []
        for info in self.rsz.userdata_infos:
            key = (info.type_id, info.path)
            if key not in wanted:
                wanted.append(key)

        synced = []
        seen = set()
        for entry in self.userdata_infos:
            key = (entry.type_id, entry.path)
            if key in wanted:
                seen.add(key)
                synced.append(entry)
        for type_id, path in wanted:
            if (type_id, path) in seen:
                continue
            class_def = self.registry.get_class(type_id) if self.registry is not None else None
            synced.append(UserdataInfo(type_id, class_def.crc if class_def is not None else 0, path))
            seen.add((type_id, path))

        if synced != self.userdata_infos:
            logger.debug("User data table now lists %d files (was %d)", len(synced), len(self.userdata_infos))
        self.userdata_infos = synced

    def _before_rebuild(self):
        return None

    def _check_rebuild(self, result, before):
        """Raise RszReferenceError to abort a rebuild before any table is replaced."""
        pass

    def _after_rebuild(self, result, before):
        pass

    ########################################
    # Writing
    ########################################

    def write(self, target=None) -> bytes:
        """
        Serialize the container. ``target`` may be a path or a binary file
        object; the bytes are returned either way.
        """
        self._require_loaded()
        if self._structure_dirty:
            raise ContainerStateError("Tree was modified; call rebuild() before write()")

        cursor = BinaryCursor()
        self._write(cursor)
        data = bytes(cursor.data)

        if target is not None:
            if isinstance(target, (str, os.PathLike)):
                with open(target, "wb") as f:
                    f.write(data)
            else:
                target.write(data)

        self.state = ContainerState.WRITTEN
        return data

    def _write_tables(self, cursor: BinaryCursor):
        """Resources and user data paths, each aligned to 16, followed by their strings."""
        cursor.align_write(16)
        resource_offset = cursor.tell
        for info in self.resource_infos:
            info.write(cursor)

        cursor.align_write(16)
        userdata_offset = cursor.tell
        for info in self.userdata_infos:
            info.write(cursor)
        return resource_offset, userdata_offset

    def _write_rsz(self, cursor: BinaryCursor) -> int:
        cursor.align_write(16)
        data_offset = cursor.tell
        child = cursor.with_base(data_offset)
        self.rsz.write(child)
        cursor.skip(child.tell)
        return data_offset

    def _write(self, cursor: BinaryCursor):
        raise NotImplementedError


def _container_classes():
    from file_handlers.rsz.pfb_file import PfbFile
    from file_handlers.rsz.scn_file import ScnFile
    from file_handlers.rsz.usr_file import UsrFile
    return (UsrFile, PfbFile, ScnFile)


def open_container(source, profile, registry=None, **options) -> RszContainer:
    """
    Read a container from a path or a bytes object, choosing USR, PFB or SCN
    from the magic. ``registry`` defaults to the descriptor configured for the
    profile in the settings file.
    """
    filepath = ""
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
    else:
        filepath = os.fspath(source)
        with open(filepath, "rb") as f:
            data = f.read()

    if not isinstance(profile, GameProfile):
        profile = get_profile(profile)
    if registry is None:
        from settings import load_settings
        from utils.registry_manager import RegistryManager
        registry = RegistryManager.instance().registry_for_profile(profile, load_settings()["registry_dir"])

    magic = data[:4]
    for container_class in _container_classes():
        if magic == container_class.MAGIC:
            container = container_class(profile, registry, data=data, filepath=filepath, **options)
            return container.read()
    raise StructuralError(f"Unrecognized container magic {magic!r}")
