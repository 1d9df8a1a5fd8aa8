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
Recursive copy of host files and directories into a mounted FAT volume.

Failures are per entry: the entry is logged and recorded in
TreeCopier.failures, and its siblings are still processed. Host directories
are enumerated in whatever order os.listdir() returns, so the copy order is
not deterministic across hosts.
"""

import os
import stat
from typing import List, Optional, Tuple

from .config import PATH_MAX, SPI_FLASH_SEC_SIZE
from .errors import (
    ImageError,
    ImageIOError,
    LibraryError,
    PathTooLongError,
    TypeCollisionError,
    UnsupportedEntryError,
)
from .log import ImageLogger
from .paths import BoundedPath, encode_image_path
from .volume import FR_NO_FILE, FR_OK


class CopyState:
    """
    Mutable state shared by one recursive walk.

    Holds the source and target path buffers and one transfer buffer that is
    reused for every file.
    """

    def __init__(self, source: str, destination: str, max_path: int, buffer_size: int):
        self.src = BoundedPath(source, max_path, "source")
        self.dst = BoundedPath(destination, max_path, "target", encode=encode_image_path)
        self.buffer = bytearray(buffer_size)


class TreeCopier:
    """
    Copies host paths into a FatVolume and counts what it created.

    Args:
        volume: Mounted FatVolume
        logger: Optional logger
        max_path: Path length ceiling in bytes, terminator included
        buffer_size: Transfer buffer size, one flash sector by default
    """

    def __init__(
        self,
        volume,
        logger: Optional[ImageLogger] = None,
        max_path: int = PATH_MAX,
        buffer_size: int = SPI_FLASH_SEC_SIZE,
    ):
        self.volume = volume
        self.logger = logger or ImageLogger()
        self.max_path = max_path
        self.buffer_size = buffer_size
        self.directories_created = 0
        self.files_copied = 0
        self.failures: List[Tuple[str, ImageError]] = []

    def copy(self, source: str, destination: str = "") -> bool:
        """
        Copy ``source`` (file or directory) to ``destination`` in the volume.

        The empty destination is the volume root. A directory source has its
        contents merged into the destination directory; a file whose
        destination is an existing directory is placed inside it.

        Returns:
            bool: True if every entry was copied
        """
        self.logger.debug(f"Processing '{source}'")
        try:
            cs = CopyState(source, destination, self.max_path, self.buffer_size)
        except PathTooLongError as e:
            self._fail(e.path, e)
            return False
        return self._copy_entry(cs)

    def _fail(self, path: str, error: ImageError) -> None:
        self.logger.error(str(error))
        self.failures.append((path, error))

    def _copy_entry(self, cs: CopyState) -> bool:
        src = str(cs.src)
        try:
            st = os.lstat(src)
        except OSError as e:
            self._fail(src, ImageIOError("Unable to get file info", src, e.errno))
            return False

        try:
            if stat.S_ISDIR(st.st_mode):
                return self._copy_dir(cs)
            if not stat.S_ISREG(st.st_mode):
                raise UnsupportedEntryError(f"'{src}' is not a normal file or directory")
            self._copy_file(cs)
        except ImageError as e:
            self._fail(src, e)
            return False
        return True

    def _copy_dir(self, cs: CopyState) -> bool:
        src = str(cs.src)
        dst = str(cs.dst)

        ret, info = self.volume.stat(dst)
        if ret == FR_OK and not info.is_dir:
            raise TypeCollisionError(
                f"Attempt to copy directory '{src}' to non-directory '{dst}'"
            )
        if ret == FR_NO_FILE:
            self.logger.debug(f"Creating directory '{dst}'")
            self.volume.mkdir(dst)
            self.directories_created += 1
        elif ret != FR_OK:
            raise LibraryError("f_stat", ret, dst)

        try:
            names = os.listdir(src)
        except OSError as e:
            raise ImageIOError("Unable to read directory", src, e.errno) from e

        ok = True
        for name in names:
            try:
                with cs.src.pushed(name), cs.dst.pushed(name):
                    if not self._copy_entry(cs):
                        ok = False
            except PathTooLongError as e:
                self._fail(e.path, e)
                ok = False
        return ok

    def _copy_file(self, cs: CopyState) -> None:
        ret, info = self.volume.stat(str(cs.dst))
        if ret == FR_OK and info.is_dir:
            # Copy into the existing directory under the source's own name
            with cs.dst.pushed(cs.src.basename()):
                self._copy_file_to(cs)
        else:
            self._copy_file_to(cs)

    def _copy_file_to(self, cs: CopyState) -> None:
        src = str(cs.src)
        dst = str(cs.dst)

        ret, info = self.volume.stat(dst)
        if ret == FR_OK and info.is_dir:
            raise TypeCollisionError(f"Attempt to copy file '{src}' to directory '{dst}'")
        if ret not in (FR_OK, FR_NO_FILE):
            raise LibraryError("f_stat", ret, dst)

        self.logger.debug(f"Copying file '{src}' to '{dst}'")
        try:
            srcf = open(src, "rb")
        except OSError as e:
            raise ImageIOError("Unable to open source", src, e.errno) from e

        with srcf:
            fh = self.volume.open(dst)
            try:
                self._transfer(srcf, fh, cs, src)
            except ImageError:
                self._close_quietly(fh, dst)
                self._unlink_quietly(dst)
                raise
            try:
                self.volume.close(fh)
            except ImageError:
                self._unlink_quietly(dst)
                raise
        self.files_copied += 1

    def _transfer(self, srcf, fh, cs: CopyState, src: str) -> None:
        view = memoryview(cs.buffer)
        try:
            while True:
                try:
                    count = srcf.readinto(cs.buffer)
                except OSError as e:
                    raise ImageIOError("Read failed for source", src, e.errno) from e
                if not count:
                    break
                self.volume.write(fh, bytes(view[:count]))
        finally:
            view.release()

    def _close_quietly(self, fh, dst: str) -> None:
        try:
            self.volume.close(fh)
        except ImageError as e:
            self.logger.debug(f"Ignoring close failure for '{dst}': {e}")

    def _unlink_quietly(self, dst: str) -> None:
        try:
            self.volume.unlink(dst)
        except ImageError as e:
            self.logger.debug(f"Ignoring unlink failure for '{dst}': {e}")
