import logging
import uuid

from file_handlers.rsz.rsz_container import ResourceInfo, RszContainer, UserdataInfo
from file_handlers.rsz.rsz_object_graph import adapt_tree
from utils.binary_handler import BinaryCursor

logger = logging.getLogger(__name__)


class ScnHeader:
    SIZE = 64
    FORMAT = "<4s5I5Q"

    def __init__(self):
        self.signature = ScnFile.MAGIC
        self.info_count = 0
        self.resource_count = 0
        self.folder_count = 0
        self.prefab_count = 0
        self.userdata_count = 0
        self.folder_tbl = 0
        self.resource_info_tbl = 0
        self.prefab_info_tbl = 0
        self.userdata_info_tbl = 0
        self.data_offset = 0

    def read(self, cursor: BinaryCursor):
        (self.signature,
         self.info_count,
         self.resource_count,
         self.folder_count,
         self.prefab_count,
         self.userdata_count,
         self.folder_tbl,
         self.resource_info_tbl,
         self.prefab_info_tbl,
         self.userdata_info_tbl,
         self.data_offset) = cursor.read(self.FORMAT)

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT,
                     self.signature,
                     self.info_count,
                     self.resource_count,
                     self.folder_count,
                     self.prefab_count,
                     self.userdata_count,
                     self.folder_tbl,
                     self.resource_info_tbl,
                     self.prefab_info_tbl,
                     self.userdata_info_tbl,
                     self.data_offset)


class ScnGameObjectInfo:
    SIZE = 32
    FORMAT = "<16siiHhi"
    is_folder = False

    def __init__(self, guid=None, object_id=0, parent_id=-1, component_count=0, ukn=0, prefab_id=-1):
        self.guid = guid if guid is not None else uuid.UUID(int=0)
        self.object_id = object_id
        self.parent_id = parent_id
        self.component_count = component_count
        self.ukn = ukn
        self.prefab_id = prefab_id

    @classmethod
    def from_info(cls, other):
        """Scene record for a copy of a game object from any container, under a fresh GUID."""
        if getattr(other, "is_folder", False):
            return ScnFolderInfo(None, None)
        return cls(uuid.uuid4(), None, None, getattr(other, "component_count", 0),
                   getattr(other, "ukn", 0), getattr(other, "prefab_id", -1))

    def read(self, cursor: BinaryCursor):
        (guid,
         self.object_id,
         self.parent_id,
         self.component_count,
         self.ukn,
         self.prefab_id) = cursor.read(self.FORMAT)
        self.guid = uuid.UUID(bytes_le=guid)
        return self

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT, self.guid.bytes_le, self.object_id, self.parent_id,
                     self.component_count, self.ukn, self.prefab_id)

    def __repr__(self):
        return f"<ScnGameObjectInfo {self.guid} id={self.object_id} parent={self.parent_id}>"


class ScnFolderInfo:
    """Scene folder: a tree node with an identity instance and no components."""
    SIZE = 8
    FORMAT = "<ii"
    is_folder = True

    def __init__(self, object_id=0, parent_id=-1):
        self.object_id = object_id
        self.parent_id = parent_id

    @property
    def component_count(self):
        return 0

    @component_count.setter
    def component_count(self, value):
        if value:
            raise ValueError("Folders have no components")

    def read(self, cursor: BinaryCursor):
        self.object_id, self.parent_id = cursor.read(self.FORMAT)
        return self

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT, self.object_id, self.parent_id)

    def __repr__(self):
        return f"<ScnFolderInfo id={self.object_id} parent={self.parent_id}>"


class PrefabInfo:
    """Prefab path used by scene game objects (``prefab_id`` indexes this table)."""
    SIZE = 8

    def __init__(self, path: str = "", parent_id: int = 0):
        self.path = path
        self.parent_id = parent_id

    def read(self, cursor: BinaryCursor):
        offset, self.parent_id = cursor.read("<II")
        self.path = cursor.read_wstring_at(offset) if offset else ""
        return self

    def write(self, cursor: BinaryCursor):
        if self.path:
            cursor.defer_string(self.path, "<I")
        else:
            cursor.write_uint32(0)
        cursor.write_uint32(self.parent_id)

    def __repr__(self):
        return f"<PrefabInfo {self.path!r}>"


class ScnFile(RszContainer):
    """Scene (.scn): game objects and folders sharing one tree."""

    MAGIC = b"SCN\x00"
    KIND = "scn"

    def __init__(self, profile, registry=None, **kwargs):
        super().__init__(profile, registry, **kwargs)
        self.header = ScnHeader()
        self.gameobjects = []
        self.folder_infos = []
        self.prefab_infos = []

    def _read(self, cursor):
        header = self.header
        header.read(cursor)
        self._check_magic(header.signature)

        self.gameobjects = [ScnGameObjectInfo().read(cursor) for _ in range(header.info_count)]
        cursor.seek(header.folder_tbl)
        self.folder_infos = [ScnFolderInfo().read(cursor) for _ in range(header.folder_count)]
        cursor.seek(header.resource_info_tbl)
        self.resource_infos = [ResourceInfo().read(cursor) for _ in range(header.resource_count)]
        cursor.seek(header.prefab_info_tbl)
        self.prefab_infos = [PrefabInfo().read(cursor) for _ in range(header.prefab_count)]
        cursor.seek(header.userdata_info_tbl)
        self.userdata_infos = [UserdataInfo().read(cursor) for _ in range(header.userdata_count)]

        self._read_rsz(cursor, header.data_offset)
        logger.debug("SCN: %d game objects, %d folders, %d prefabs",
                     len(self.gameobjects), len(self.folder_infos), len(self.prefab_infos))

    def game_object_infos(self):
        return self.gameobjects + self.folder_infos

    def prefab_path(self, info: ScnGameObjectInfo):
        if 0 <= info.prefab_id < len(self.prefab_infos):
            return self.prefab_infos[info.prefab_id].path
        return None

    def import_tree(self, node, parent=None):
        """Add a copy of ``node`` under ``parent`` (or as a new root) and mark the tree dirty."""
        roots = self.root_objects()
        copy = adapt_tree(node, ScnGameObjectInfo.from_info)
        if parent is None:
            roots.append(copy)
        else:
            parent.add_child(copy)
        self.mark_dirty()
        return copy

    def _after_rebuild(self, result, before):
        self.gameobjects = [info for info in result.infos if not info.is_folder]
        self.folder_infos = [info for info in result.infos if info.is_folder]

    def _write(self, cursor):
        header = self.header
        cursor.write_bytes(b"\x00" * ScnHeader.SIZE)
        for info in self.gameobjects:
            info.write(cursor)

        cursor.align_write(16)
        header.folder_tbl = cursor.tell
        for folder in self.folder_infos:
            folder.write(cursor)

        cursor.align_write(16)
        header.resource_info_tbl = cursor.tell
        for info in self.resource_infos:
            info.write(cursor)

        cursor.align_write(16)
        header.prefab_info_tbl = cursor.tell
        for info in self.prefab_infos:
            info.write(cursor)

        cursor.align_write(16)
        header.userdata_info_tbl = cursor.tell
        for info in self.userdata_infos:
            info.write(cursor)

        cursor.flush_strings()
        header.data_offset = self._write_rsz(cursor)

        header.signature = self.MAGIC
        header.info_count = len(self.gameobjects)
        header.folder_count = len(self.folder_infos)
        header.resource_count = len(self.resource_infos)
        header.prefab_count = len(self.prefab_infos)
        header.userdata_count = len(self.userdata_infos)
        with cursor.seek_temp(0):
            header.write(cursor)
