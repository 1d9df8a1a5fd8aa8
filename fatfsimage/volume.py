# Copyright 2014-present PlatformIO <contact@platformio.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FAT volume on a wear-leveled disk, driven through fatfs-ng.

FatVolume registers the disk as a fatfs logical drive and exposes the FatFs
calls the tree copier needs, returning or raising with the FatFs result
code intact.
"""

import errno
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from fatfs import Partition
from fatfs.wrapper import (
    FIL_Handle,
    FILINFO_Handle,
    FatFSException,
    pyf_close,
    pyf_mkdir,
    pyf_mkfs,
    pyf_open,
    pyf_stat,
    pyf_unlink,
    pyf_write,
    PY_AM_DIR as AM_DIR,
    PY_FA_CREATE_ALWAYS as FA_CREATE_ALWAYS,
    PY_FA_WRITE as FA_WRITE,
    PY_FR_INVALID_NAME as FR_INVALID_NAME,
    PY_FR_NO_FILE as FR_NO_FILE,
    PY_FR_NO_FILESYSTEM as FR_NO_FILESYSTEM,
    PY_FR_OK as FR_OK,
)

from .errors import ImageIOError, LibraryError
from .log import ImageLogger

# Two FAT copies, 512 root entries, automatic alignment and cluster size
MKFS_N_FAT = 2
MKFS_N_ROOT = 512
MAX_FAT12_CLUSTERS = 4085
MAX_FAT16_CLUSTERS = 65525


@dataclass
class FileInfo:
    name: str
    size: int
    attr: int

    @property
    def is_dir(self) -> bool:
        return bool(self.attr & AM_DIR)


@dataclass
class VolumeInfo:
    """FAT geometry read back from the boot sector and the first FAT."""

    fat_type: str
    sector_size: int
    total_sectors: int
    cluster_size: int
    total_clusters: int
    free_clusters: int


ROOT_INFO = FileInfo(name="", size=0, attr=AM_DIR)


def is_root(path: str) -> bool:
    return path in ("", "/")


class FatVolume:
    """
    One FAT volume on one disk.

    Args:
        disk: fatfs Disk implementation (a WearLevelingDisk)
        logger: Optional logger
    """

    def __init__(self, disk, logger: Optional[ImageLogger] = None):
        self.disk = disk
        self.logger = logger or ImageLogger()
        self.partition = None
        self.mounted = False

    @property
    def drive(self) -> Optional[str]:
        return self.partition.pname.decode() if self.partition is not None else None

    def _register(self) -> None:
        if self.partition is not None:
            return
        try:
            self.partition = Partition(self.disk)
        except FatFSException as e:
            raise LibraryError("register", e.code) from e

    def _path(self, path: str) -> bytes:
        if not path.startswith("/"):
            path = "/" + path
        try:
            return self.partition.pname + path.encode("ascii")
        except UnicodeEncodeError as e:
            raise LibraryError("path", FR_INVALID_NAME, path) from e

    def _check(self, function: str, ret: int, *args) -> None:
        # A latched device error is the more precise cause of a failed call
        self.disk.raise_for_error()
        if ret != FR_OK:
            raise LibraryError(function, ret, *args)

    def format(self) -> None:
        """Create a FAT volume covering the whole disk."""
        self._register()
        sector_size = self.disk.ioctl_get_sector_size()
        self.logger.debug(f"Creating filesystem on drive {self.drive}")
        ret = pyf_mkfs(
            self.partition.pname,
            n_fat=MKFS_N_FAT,
            align=0,
            n_root=MKFS_N_ROOT,
            au_size=0,
            workarea_size=sector_size * 2,
        )
        self._check("f_mkfs", ret, self.drive)

    def mount(self) -> None:
        self._register()
        try:
            self.partition.mount()
        except FatFSException as e:
            self.disk.raise_for_error()
            raise LibraryError("f_mount", e.code, self.drive) from e
        self.disk.raise_for_error()
        self.mounted = True

    def unmount(self) -> None:
        """Unmount and release the drive slot. Safe to call more than once."""
        if self.partition is None:
            return
        partition, self.partition = self.partition, None
        self.mounted = False
        try:
            partition.unmount()
        except FatFSException as e:
            raise LibraryError("f_unmount", e.code, partition.pname.decode()) from e

    def stat(self, path: str) -> Tuple[int, Optional[FileInfo]]:
        """
        Look up a path.

        Returns:
            tuple: (FatFs result code, FileInfo or None). The volume root
            always reports as an existing directory.
        """
        if is_root(path):
            return FR_OK, ROOT_INFO
        fh = FILINFO_Handle()
        ret = pyf_stat(self._path(path), fh)
        self.disk.raise_for_error()
        if ret != FR_OK:
            return ret, None
        return ret, FileInfo(name=fh.get_name(), size=fh.get_size(), attr=fh.get_attr())

    def mkdir(self, path: str) -> None:
        ret = pyf_mkdir(self._path(path))
        self._check("f_mkdir", ret, path)

    def open(self, path: str) -> FIL_Handle:
        """Open ``path`` for writing, creating or truncating it."""
        fh = FIL_Handle()
        ret = pyf_open(fh, self._path(path), FA_WRITE | FA_CREATE_ALWAYS)
        self._check("f_open", ret, path)
        return fh

    def write(self, fh: FIL_Handle, data: bytes) -> None:
        try:
            _ret, written = pyf_write(fh, data)
        except FatFSException as e:
            self.disk.raise_for_error()
            raise LibraryError("f_write", e.code) from e
        self.disk.raise_for_error()
        if written != len(data):
            raise ImageIOError(
                f"Volume full after {written} of {len(data)} bytes", errno=errno.ENOSPC
            )

    def close(self, fh: FIL_Handle) -> None:
        ret = pyf_close(fh)
        self._check("f_close", ret)

    def unlink(self, path: str) -> None:
        ret = pyf_unlink(self._path(path))
        self._check("f_unlink", ret, path)

    def info(self) -> VolumeInfo:
        """
        Read geometry and free space from the on-disk structures.

        The fatfs binding does not wrap f_getfree, so the first FAT is
        scanned for free entries instead.
        """
        sector_size = self.disk.ioctl_get_sector_size()
        boot = self.disk.read(0, sector_size)
        self.disk.raise_for_error()

        bytes_per_sector = struct.unpack_from("<H", boot, 11)[0]
        sectors_per_cluster = boot[13]
        reserved_sectors = struct.unpack_from("<H", boot, 14)[0]
        num_fats = boot[16]
        root_entries = struct.unpack_from("<H", boot, 17)[0]
        total_sectors = struct.unpack_from("<H", boot, 19)[0] or struct.unpack_from("<I", boot, 32)[0]
        sectors_per_fat = struct.unpack_from("<H", boot, 22)[0] or struct.unpack_from("<I", boot, 36)[0]

        if bytes_per_sector != sector_size or sectors_per_cluster == 0:
            raise LibraryError("f_getfree", FR_NO_FILESYSTEM)

        root_sectors = (root_entries * 32 + bytes_per_sector - 1) // bytes_per_sector
        data_sectors = total_sectors - (reserved_sectors + num_fats * sectors_per_fat + root_sectors)
        clusters = data_sectors // sectors_per_cluster
        if clusters <= MAX_FAT12_CLUSTERS:
            fat_type = "FAT12"
        elif clusters <= MAX_FAT16_CLUSTERS:
            fat_type = "FAT16"
        else:
            fat_type = "FAT32"

        fat = self.disk.read(reserved_sectors, sectors_per_fat * bytes_per_sector)
        self.disk.raise_for_error()
        free = sum(1 for n in range(2, clusters + 2) if _fat_entry(fat, fat_type, n) == 0)

        return VolumeInfo(
            fat_type=fat_type,
            sector_size=bytes_per_sector,
            total_sectors=total_sectors,
            cluster_size=sectors_per_cluster * bytes_per_sector,
            total_clusters=clusters,
            free_clusters=free,
        )


def _fat_entry(fat: bytes, fat_type: str, n: int) -> int:
    if fat_type == "FAT12":
        value = struct.unpack_from("<H", fat, n + n // 2)[0]
        return value >> 4 if n & 1 else value & 0x0FFF
    if fat_type == "FAT16":
        return struct.unpack_from("<H", fat, n * 2)[0]
    return struct.unpack_from("<I", fat, n * 4)[0] & 0x0FFFFFFF
