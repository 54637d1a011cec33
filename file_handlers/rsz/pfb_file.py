import logging

from file_handlers.rsz.rsz_container import ContainerState, ResourceInfo, RszContainer, UserdataInfo
from file_handlers.rsz.rsz_errors import RszReferenceError
from file_handlers.rsz.rsz_object_graph import adapt_tree
from utils.binary_handler import BinaryCursor

logger = logging.getLogger(__name__)


class PfbHeader:
    SIZE = 56
    FORMAT = "<4s3iQ4Q"

    def __init__(self):
        self.signature = PfbFile.MAGIC
        self.info_count = 0
        self.resource_count = 0
        self.gameobject_ref_info_count = 0
        self.userdata_count = 0
        self.gameobject_ref_info_tbl = 0
        self.resource_info_tbl = 0
        self.userdata_info_tbl = 0
        self.data_offset = 0

    def read(self, cursor: BinaryCursor):
        (self.signature,
         self.info_count,
         self.resource_count,
         self.gameobject_ref_info_count,
         self.userdata_count,
         self.gameobject_ref_info_tbl,
         self.resource_info_tbl,
         self.userdata_info_tbl,
         self.data_offset) = cursor.read(self.FORMAT)

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT,
                     self.signature,
                     self.info_count,
                     self.resource_count,
                     self.gameobject_ref_info_count,
                     self.userdata_count,
                     self.gameobject_ref_info_tbl,
                     self.resource_info_tbl,
                     self.userdata_info_tbl,
                     self.data_offset)


class PfbGameObjectInfo:
    SIZE = 12
    FORMAT = "<iii"
    is_folder = False

    def __init__(self, object_id=0, parent_id=-1, component_count=0):
        self.object_id = object_id
        self.parent_id = parent_id
        self.component_count = component_count

    @classmethod
    def from_info(cls, other):
        """Prefab record for a game object taken from any container."""
        return cls(None, None, getattr(other, "component_count", 0))

    def read(self, cursor: BinaryCursor):
        self.object_id, self.parent_id, self.component_count = cursor.read(self.FORMAT)
        return self

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT, self.object_id, self.parent_id, self.component_count)

    def __repr__(self):
        return f"<PfbGameObjectInfo id={self.object_id} parent={self.parent_id} components={self.component_count}>"


class GameObjectRefInfo:
    """A GameObjectRef field (property/array slot of a component) pointing at another object."""
    SIZE = 16
    FORMAT = "<4i"

    def __init__(self, object_id=0, property_id=0, array_index=0, target_id=0):
        self.object_id = object_id
        self.property_id = property_id
        self.array_index = array_index
        self.target_id = target_id

    def read(self, cursor: BinaryCursor):
        self.object_id, self.property_id, self.array_index, self.target_id = cursor.read(self.FORMAT)
        return self

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT, self.object_id, self.property_id, self.array_index, self.target_id)

    def __repr__(self):
        return f"<GameObjectRefInfo {self.object_id}.{self.property_id}[{self.array_index}] -> {self.target_id}>"


class PfbFile(RszContainer):
    """Prefab (.pfb): a game object tree plus GameObjectRef fixups."""

    MAGIC = b"PFB\x00"
    KIND = "pfb"

    def __init__(self, profile, registry=None, **kwargs):
        super().__init__(profile, registry, **kwargs)
        self.header = PfbHeader()
        self.gameobjects = []
        self.gameobject_ref_infos = []

    def _read(self, cursor):
        header = self.header
        header.read(cursor)
        self._check_magic(header.signature)

        self.gameobjects = [PfbGameObjectInfo().read(cursor) for _ in range(header.info_count)]

        cursor.seek(header.gameobject_ref_info_tbl)
        self.gameobject_ref_infos = [GameObjectRefInfo().read(cursor)
                                     for _ in range(header.gameobject_ref_info_count)]
        cursor.seek(header.resource_info_tbl)
        self.resource_infos = [ResourceInfo().read(cursor) for _ in range(header.resource_count)]
        cursor.seek(header.userdata_info_tbl)
        self.userdata_infos = [UserdataInfo().read(cursor) for _ in range(header.userdata_count)]

        self._read_rsz(cursor, header.data_offset)
        logger.debug("PFB: %d game objects, %d ref infos, %d resources",
                     len(self.gameobjects), len(self.gameobject_ref_infos), len(self.resource_infos))

    def game_object_infos(self):
        return self.gameobjects

    def import_tree(self, node):
        """
        Replace this prefab's content with a copy of ``node`` (from any
        container) as its only root, then rebuild.
        """
        self.root_objects()
        self._roots = [adapt_tree(node, PfbGameObjectInfo.from_info)]
        self._structure_dirty = True
        self.state = ContainerState.DIRTY
        return self.rebuild()

    def _object_instance(self, object_index):
        if 0 <= object_index < len(self.rsz.object_table):
            return self.rsz.resolve(self.rsz.object_table[object_index])
        return None

    def _before_rebuild(self):
        return [(ref, self._object_instance(ref.object_id), self._object_instance(ref.target_id))
                for ref in self.gameobject_ref_infos]

    @staticmethod
    def _object_indices(result):
        index_of = {}
        for index, ordinal in enumerate(result.object_table):
            index_of.setdefault(id(result.instances[ordinal]), index)
        return index_of

    def _check_rebuild(self, result, before):
        index_of = self._object_indices(result)
        kept = {id(instance) for instance in result.instances}
        for ref, owner, target in before:
            for instance in (owner, target):
                if instance is not None and id(instance) in kept and id(instance) not in index_of:
                    raise RszReferenceError(
                        f"GameObjectRefInfo {ref!r} needs {instance!r} in the object table; "
                        "rebuild with nested_components_in_object_table enabled")

    def _after_rebuild(self, result, before):
        self.gameobjects = list(result.infos)
        index_of = self._object_indices(result)

        kept = []
        for ref, owner, target in before:
            owner_index = index_of.get(id(owner)) if owner is not None else None
            target_index = index_of.get(id(target)) if target is not None else None
            if owner_index is None or target_index is None:
                logger.warning("Dropped GameObjectRefInfo %r: object no longer in the prefab", ref)
                continue
            ref.object_id = owner_index
            ref.target_id = target_index
            kept.append(ref)
        self.gameobject_ref_infos = kept

    def _write(self, cursor):
        header = self.header
        cursor.write_bytes(b"\x00" * PfbHeader.SIZE)
        for info in self.gameobjects:
            info.write(cursor)

        header.gameobject_ref_info_tbl = cursor.tell
        for ref in self.gameobject_ref_infos:
            ref.write(cursor)

        header.resource_info_tbl, header.userdata_info_tbl = self._write_tables(cursor)
        cursor.flush_strings()
        header.data_offset = self._write_rsz(cursor)

        header.signature = self.MAGIC
        header.info_count = len(self.gameobjects)
        header.resource_count = len(self.resource_infos)
        header.gameobject_ref_info_count = len(self.gameobject_ref_infos)
        header.userdata_count = len(self.userdata_infos)
        with cursor.seek_temp(0):
            header.write(cursor)
