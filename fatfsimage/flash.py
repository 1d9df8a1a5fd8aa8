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
Host file standing in for raw SPI flash.

VirtualFlash is the only place that does file offset arithmetic. It keeps
flash semantics: erased bytes read back as 0xFF, and every read or write is
all-or-nothing.
"""

from typing import BinaryIO, Optional

from .errors import ImageIOError
from .log import ImageLogger

ERASE_VALUE = 0xFF


class VirtualFlash:
    """
    Flash chip backed by a single, exclusively owned host file.

    Args:
        image: Open binary file, readable and writable
        chip_size: Total addressable size in bytes
        sector_size: Erase and I/O granularity in bytes
        logger: Optional logger; every call is traced at verbose level
        name: Host path of the image, used in error messages
    """

    def __init__(
        self,
        image: BinaryIO,
        chip_size: int,
        sector_size: int,
        logger: Optional[ImageLogger] = None,
        name: Optional[str] = None,
    ):
        self.image = image
        self._chip_size = chip_size
        self._sector_size = sector_size
        self.logger = logger or ImageLogger()
        self.name = name or getattr(image, "name", None)
        self._erased = bytes([ERASE_VALUE]) * sector_size

    @classmethod
    def create(
        cls,
        path: str,
        chip_size: int,
        sector_size: int,
        logger: Optional[ImageLogger] = None,
    ) -> "VirtualFlash":
        """
        Create (or truncate) the image file and fill it with the erase value.

        Raises:
            ImageIOError: If the file cannot be opened or filled; the file is
                closed again before the error propagates
        """
        try:
            image = open(path, "w+b")
        except OSError as e:
            raise ImageIOError("Open failed", path, e.errno) from e

        flash = cls(image, chip_size, sector_size, logger, name=path)
        try:
            flash.clear()
        except ImageIOError:
            flash.close()
            raise
        return flash

    def close(self) -> None:
        """Flush and close the image file. Safe to call more than once."""
        if self.image is None:
            return
        image, self.image = self.image, None
        try:
            image.flush()
        finally:
            image.close()

    def chip_size(self) -> int:
        self.logger.verbose(f"chip_size - {self._chip_size}")
        return self._chip_size

    def sector_size(self) -> int:
        self.logger.verbose(f"sector_size - {self._sector_size}")
        return self._sector_size

    def clear(self) -> None:
        """Erase the whole chip."""
        self.erase_range(0, self._chip_size)

    def erase_sector(self, sector: int) -> None:
        self.logger.verbose(f"erase_sector - sector=0x{sector:08x}")
        self.erase_range(sector * self._sector_size, self._sector_size)

    def erase_range(self, start_address: int, size: int) -> None:
        """
        Set every byte in [start_address, start_address + size) to 0xFF.

        Written in chunks of at most one sector; the last chunk is capped to
        the remaining byte count. A failure part way through may leave some
        of the range erased, and the caller must treat the image as invalid.
        """
        self.logger.verbose(f"erase_range - addr=0x{start_address:08x} size={size}")
        self._check_bounds("Erase", start_address, size)
        self._seek(start_address)

        done = 0
        while done < size:
            length = min(self._sector_size, size - done)
            chunk = self._erased if length == self._sector_size else self._erased[:length]
            self._write_all(chunk)
            done += length

    def write(self, address: int, data: bytes) -> None:
        self.logger.verbose(f"write - addr=0x{address:08x} size={len(data)}")
        self._check_bounds("Write", address, len(data))
        self._seek(address)
        self._write_all(data)

    def read(self, address: int, size: int) -> bytes:
        self.logger.verbose(f"read - addr=0x{address:08x} size={size}")
        self._check_bounds("Read", address, size)
        self._seek(address)
        try:
            data = self.image.read(size)
        except OSError as e:
            raise ImageIOError(f"Read of {size} bytes at 0x{address:08x} failed", self.name, e.errno) from e
        if len(data) != size:
            raise ImageIOError(
                f"Short read at 0x{address:08x}: {len(data)} of {size} bytes", self.name
            )
        return data

    def _check_bounds(self, operation: str, address: int, size: int) -> None:
        if address < 0 or size < 0 or address + size > self._chip_size:
            raise ImageIOError(
                f"{operation} of {size} bytes at 0x{address:08x} exceeds chip size {self._chip_size}",
                self.name,
            )

    def _seek(self, address: int) -> None:
        if self.image is None:
            raise ImageIOError("Image is closed", self.name)
        try:
            self.image.seek(address)
        except (OSError, ValueError) as e:
            raise ImageIOError(f"Seek to 0x{address:08x} failed", self.name, getattr(e, "errno", None)) from e

    def _write_all(self, data: bytes) -> None:
        try:
            written = self.image.write(data)
        except OSError as e:
            raise ImageIOError(f"Write of {len(data)} bytes failed", self.name, e.errno) from e
        if written != len(data):
            raise ImageIOError(f"Short write: {written} of {len(data)} bytes", self.name)
