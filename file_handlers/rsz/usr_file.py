import logging

from file_handlers.rsz.rsz_container import ResourceInfo, RszContainer, UserdataInfo
from utils.binary_handler import BinaryCursor

logger = logging.getLogger(__name__)


class UsrHeader:
    SIZE = 48
    FORMAT = "<4s3I3QQ"

    def __init__(self):
        self.signature = UsrFile.MAGIC
        self.resource_count = 0
        self.userdata_count = 0
        self.info_count = 0
        self.resource_info_tbl = 0
        self.userdata_info_tbl = 0
        self.data_offset = 0
        self.reserved = 0

    def read(self, cursor: BinaryCursor):
        (self.signature,
         self.resource_count,
         self.userdata_count,
         self.info_count,
         self.resource_info_tbl,
         self.userdata_info_tbl,
         self.data_offset,
         self.reserved) = cursor.read(self.FORMAT)

    def write(self, cursor: BinaryCursor):
        cursor.write(self.FORMAT,
                     self.signature,
                     self.resource_count,
                     self.userdata_count,
                     self.info_count,
                     self.resource_info_tbl,
                     self.userdata_info_tbl,
                     self.data_offset,
                     self.reserved)


class UsrFile(RszContainer):
    """
    User data file (.user). No game object tree: the object table roots are
    the only entry points, and a rebuild keeps whatever they reach.
    """

    MAGIC = b"USR\x00"
    KIND = "usr"

    def __init__(self, profile, registry=None, **kwargs):
        super().__init__(profile, registry, **kwargs)
        self.header = UsrHeader()

    def _read(self, cursor):
        header = self.header
        header.read(cursor)
        self._check_magic(header.signature)

        cursor.seek(header.resource_info_tbl)
        self.resource_infos = [ResourceInfo().read(cursor) for _ in range(header.resource_count)]
        cursor.seek(header.userdata_info_tbl)
        self.userdata_infos = [UserdataInfo().read(cursor) for _ in range(header.userdata_count)]

        self._read_rsz(cursor, header.data_offset)

    def _root_instances(self):
        return [self.rsz.resolve(ordinal) for ordinal in self.rsz.object_table]

    def _write(self, cursor):
        header = self.header
        cursor.write_bytes(b"\x00" * UsrHeader.SIZE)
        header.resource_info_tbl, header.userdata_info_tbl = self._write_tables(cursor)
        cursor.flush_strings()
        header.data_offset = self._write_rsz(cursor)

        header.signature = self.MAGIC
        header.resource_count = len(self.resource_infos)
        header.userdata_count = len(self.userdata_infos)
        with cursor.seek_temp(0):
            header.write(cursor)
