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
Physical I/O for FatFs, forwarded to the wear-leveling layer.

fatfs-ng calls these methods from its C disk_read/disk_write/disk_ioctl
callbacks and reports RES_OK whatever the Python side does, so a failing
device call cannot reach FatFs as a DRESULT. The first failure is latched
instead and raise_for_error() re-raises it once the FatFs call returns.
"""

from typing import Optional

from fatfs.diskio import Disk

from .errors import ImageError
from .log import ImageLogger

STA_OK = 0
ERASED_FILL = b"\xff"


class WearLevelingDisk(Disk):
    """
    FatFs disk backed by a WearLeveling device.

    Args:
        wl: Configured and initialized WearLeveling instance
        logger: Optional logger; every call is traced at verbose level
    """

    def __init__(self, wl, logger: Optional[ImageLogger] = None):
        super().__init__()
        self.wl = wl
        self.logger = logger or ImageLogger()
        self.error: Optional[ImageError] = None

    def _latch(self, error: ImageError) -> None:
        self.logger.verbose(f"disk error latched: {error}")
        if self.error is None:
            self.error = error

    def raise_for_error(self) -> None:
        """Raise (and clear) the first device error seen since the last check."""
        if self.error is not None:
            error, self.error = self.error, None
            raise error

    def initialize(self) -> int:
        self.logger.verbose("disk_initialize")
        return STA_OK

    def status(self) -> int:
        # A file backed device is never removed or write protected
        self.logger.verbose("disk_status")
        return STA_OK

    def ioctl_get_sector_count(self) -> int:
        count = self.wl.chip_size() // self.wl.sector_size()
        self.logger.verbose(f"disk_ioctl: GET_SECTOR_COUNT={count}")
        return count

    def ioctl_get_sector_size(self) -> int:
        return self.wl.sector_size()

    def ioctl_get_block_size(self) -> int:
        self.logger.verbose("disk_ioctl: GET_BLOCK_SIZE")
        return 1

    def ioctl_sync(self) -> None:
        self.logger.verbose("disk_ioctl: CTRL_SYNC")

    def read(self, sector: int, count: int) -> bytes:
        """
        Read ``count`` bytes starting at ``sector``.

        On failure the erased pattern is returned so FatFs sees a full
        buffer, and the error is latched.
        """
        self.logger.verbose(f"disk_read - sector={sector}, bytes={count}")
        try:
            return self.wl.read(sector * self.wl.sector_size(), count)
        except ImageError as e:
            self._latch(e)
            return ERASED_FILL * count

    def write(self, sector: int, count: int, buff: bytes) -> None:
        """Erase the target range, then write it. Flash only clears bits."""
        self.logger.verbose(f"disk_write - sector={sector}, bytes={count}")
        addr = sector * self.wl.sector_size()
        try:
            self.wl.erase_range(addr, count)
            self.wl.write(addr, bytes(buff[:count]))
        except ImageError as e:
            self._latch(e)
