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
ESP-IDF wear-leveling layer over a VirtualFlash.

Layout of the configured region (same as ESP-IDF wl_fatfsgen.py and the
fatfs-ng ESP32 wear-leveling wrapper):

    [dummy] [logical sectors ...] [state1] [state2] [config]

State records are encoded with fatfs' ESP32WearLeveling so the image can be
recognized by is_esp32_wl_image() and by the ESP-IDF runtime. Logical
addresses are translated the way WL_Flash::calcAddr does it. The dummy
sector is never rotated while an image is being built, so a fresh image
keeps pos == 0 and move_count == 0.
"""

import random
import struct
import zlib
from dataclasses import dataclass
from typing import Optional

from fatfs.esp32_wl import ESP32WearLeveling

from .errors import (
    ESP_ERR_INVALID_ARG,
    ESP_ERR_INVALID_SIZE,
    ESP_ERR_INVALID_STATE,
    LibraryError,
)
from .log import ImageLogger

WL_STATE_FORMAT = "<IIIIIIII"
WL_CONFIG_FORMAT = "<IIIIIIII"
WL_STATE_CRC_OFFSET = ESP32WearLeveling.WL_STATE_HEADER_SIZE - 4
WL_RESERVED_SECTORS = ESP32WearLeveling.WL_TOTAL_SECTORS


@dataclass(frozen=True)
class WLConfig:
    """wl_config_t: passed once to configure(), immutable afterwards."""

    start_addr: int
    full_mem_size: int
    page_size: int
    sector_size: int
    updaterate: int
    wr_size: int
    version: int
    temp_buff_size: int

    def pack(self) -> bytes:
        """Config record: eight fields, CRC32 of them, three zero words."""
        body = struct.pack(
            WL_CONFIG_FORMAT,
            self.start_addr,
            self.full_mem_size,
            self.page_size,
            self.sector_size,
            self.updaterate,
            self.wr_size,
            self.version,
            self.temp_buff_size,
        )
        crc = zlib.crc32(body) & 0xFFFFFFFF
        return body + struct.pack("<IIII", crc, 0, 0, 0)


@dataclass
class WLState:
    """Decoded WL_State record."""

    pos: int
    max_pos: int
    move_count: int
    access_count: int
    max_count: int
    block_size: int
    version: int
    device_id: int

    @classmethod
    def unpack(cls, data: bytes) -> Optional["WLState"]:
        """Decode a state record, or return None if its CRC does not match."""
        if len(data) < ESP32WearLeveling.WL_STATE_HEADER_SIZE:
            return None
        (crc,) = struct.unpack_from("<I", data, WL_STATE_CRC_OFFSET)
        if zlib.crc32(data[:WL_STATE_CRC_OFFSET]) & 0xFFFFFFFF != crc:
            return None
        return cls(*struct.unpack_from(WL_STATE_FORMAT, data, 0))


class WearLeveling:
    """
    Logical flash device on top of a physical one.

    Offers the same chip_size/sector_size/erase/read/write primitives as
    VirtualFlash, in logical addresses.

    Args:
        logger: Optional logger
        device_id: Device id stored in fresh state records (random if None)
    """

    def __init__(self, logger: Optional[ImageLogger] = None, device_id: Optional[int] = None):
        self.logger = logger or ImageLogger()
        self.device_id = device_id
        self.cfg: Optional[WLConfig] = None
        self.flash = None
        self.state: Optional[WLState] = None
        self.flash_size = 0
        self.addr_state1 = 0
        self.addr_state2 = 0
        self.addr_cfg = 0

    def configure(self, cfg: WLConfig, flash) -> None:
        """
        Validate the configuration against the flash device and compute the
        layout.

        Raises:
            LibraryError: ESP_ERR_INVALID_ARG for an unusable configuration
        """
        self.logger.debug(
            f"Configuring wear levelling: start=0x{cfg.start_addr:x} size={cfg.full_mem_size} "
            f"page={cfg.page_size} sector={cfg.sector_size} updaterate={cfg.updaterate} "
            f"version={cfg.version}"
        )
        if (
            cfg.sector_size <= 0
            or cfg.temp_buff_size <= 0
            or (cfg.sector_size % cfg.temp_buff_size) != 0
            or cfg.page_size < cfg.sector_size
            or (cfg.start_addr % cfg.sector_size) != 0
            or (cfg.full_mem_size % cfg.sector_size) != 0
        ):
            raise LibraryError("wl_config", ESP_ERR_INVALID_ARG, "geometry", esp=True)
        if cfg.version != ESP32WearLeveling.WL_VERSION:
            raise LibraryError("wl_config", ESP_ERR_INVALID_ARG, f"version={cfg.version}", esp=True)
        if cfg.start_addr + cfg.full_mem_size > flash.chip_size():
            raise LibraryError("wl_config", ESP_ERR_INVALID_ARG, "region exceeds chip", esp=True)
        if flash.sector_size() != cfg.sector_size:
            raise LibraryError("wl_config", ESP_ERR_INVALID_ARG, "sector size mismatch", esp=True)

        state_size = cfg.sector_size
        cfg_size = cfg.sector_size
        data_pages = (cfg.full_mem_size - state_size * 2 - cfg_size) // cfg.page_size
        # One page of the data area is the dummy sector
        if data_pages < 2:
            raise LibraryError("wl_config", ESP_ERR_INVALID_ARG, "region too small", esp=True)

        self.cfg = cfg
        self.flash = flash
        self.state = None
        self.flash_size = (data_pages - 1) * cfg.page_size
        self.addr_cfg = cfg.start_addr + cfg.full_mem_size - cfg_size
        self.addr_state1 = cfg.start_addr + cfg.full_mem_size - state_size * 2 - cfg_size
        self.addr_state2 = cfg.start_addr + cfg.full_mem_size - state_size - cfg_size

    def initialize(self) -> None:
        """
        Load the state records, or write fresh ones if none is valid.

        Raises:
            LibraryError: ESP_ERR_INVALID_STATE if called before configure()
                or if a valid state record does not match the configuration
        """
        if self.cfg is None:
            raise LibraryError("wl_init", ESP_ERR_INVALID_STATE, "not configured", esp=True)

        header = ESP32WearLeveling.WL_STATE_HEADER_SIZE
        raw1 = self.flash.read(self.addr_state1, header)
        raw2 = self.flash.read(self.addr_state2, header)
        state1 = WLState.unpack(raw1)
        state2 = WLState.unpack(raw2)

        if state1 is None and state2 is None:
            self.logger.debug("No valid wear levelling state, initializing sections")
            self._init_sections()
            return

        if state1 is not None:
            if raw2 != raw1:
                self.logger.debug("Restoring wear levelling state copy 2")
                self._write_state(self.addr_state2, raw1)
            state = state1
        else:
            self.logger.debug("Restoring wear levelling state copy 1")
            self._write_state(self.addr_state1, raw2)
            state = state2

        expected_max_pos = self.flash_size // self.cfg.page_size + 1
        if state.block_size != self.cfg.sector_size or state.max_pos != expected_max_pos:
            raise LibraryError("wl_init", ESP_ERR_INVALID_STATE, "state does not match config", esp=True)
        self.state = state

    def _init_sections(self) -> None:
        wl = ESP32WearLeveling(sector_size=self.cfg.sector_size)
        device_id = self.device_id
        if device_id is None:
            device_id = random.randint(0, 0xFFFFFFFF)
        max_pos = self.flash_size // self.cfg.page_size + 1
        record = wl.create_wl_state(
            pos=0,
            max_pos=max_pos,
            move_count=0,
            access_count=0,
            max_count=self.cfg.updaterate,
            device_id=device_id,
        )
        self._write_state(self.addr_state1, record)
        self._write_state(self.addr_state2, record)

        self.flash.erase_range(self.addr_cfg, self.cfg.sector_size)
        self.flash.write(self.addr_cfg, self.cfg.pack())

        self.state = WLState.unpack(record)

    def _write_state(self, address: int, record: bytes) -> None:
        self.flash.erase_range(address, self.cfg.sector_size)
        self.flash.write(address, record)

    def _ready(self, function: str) -> None:
        if self.state is None:
            raise LibraryError(function, ESP_ERR_INVALID_STATE, "not initialized", esp=True)

    def _calc_addr(self, addr: int) -> int:
        page = self.cfg.page_size
        result = (self.flash_size - self.state.move_count * page + addr) % self.flash_size
        dummy_addr = self.state.pos * page
        if result >= dummy_addr:
            result += page
        return self.cfg.start_addr + result

    def _check_range(self, function: str, addr: int, size: int) -> None:
        self._ready(function)
        if addr < 0 or size < 0 or addr + size > self.flash_size:
            raise LibraryError(function, ESP_ERR_INVALID_SIZE, f"0x{addr:x}", size, esp=True)

    def chip_size(self) -> int:
        return self.flash_size

    def sector_size(self) -> int:
        return self.cfg.sector_size

    def erase_sector(self, sector: int) -> None:
        self._check_range("wl_erase_sector", sector * self.cfg.sector_size, self.cfg.sector_size)
        self.flash.erase_range(self._calc_addr(sector * self.cfg.sector_size), self.cfg.sector_size)

    def erase_range(self, start_address: int, size: int) -> None:
        """Erase every sector touched by the range."""
        sector_size = self.cfg.sector_size
        start_sector = start_address // sector_size
        count = size // sector_size + (1 if size % sector_size else 0)
        self._check_range("wl_erase_range", start_sector * sector_size, count * sector_size)
        for sector in range(start_sector, start_sector + count):
            self.flash.erase_range(self._calc_addr(sector * sector_size), sector_size)

    def write(self, dest_addr: int, data: bytes) -> None:
        self._check_range("wl_write", dest_addr, len(data))
        page = self.cfg.page_size
        done = 0
        while done < len(data):
            addr = dest_addr + done
            length = min(page - addr % page, len(data) - done)
            self.flash.write(self._calc_addr(addr), data[done:done + length])
            done += length

    def read(self, src_addr: int, size: int) -> bytes:
        self._check_range("wl_read", src_addr, size)
        page = self.cfg.page_size
        out = bytearray()
        while len(out) < size:
            addr = src_addr + len(out)
            length = min(page - addr % page, size - len(out))
            out += self.flash.read(self._calc_addr(addr), length)
        return bytes(out)
