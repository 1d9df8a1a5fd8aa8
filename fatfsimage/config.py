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
Build configuration.

Defaults match the ESP-IDF wear-leveling component and the flash geometry
of ESP32 SPI flash. An optional ini file may override the tunables; the
command line overrides both.
"""

import configparser
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .log import DEFAULT_LEVEL

SPI_FLASH_SEC_SIZE = 4096
PATH_MAX = 4096
MAX_SOURCE_PATHS = 20

# esp-idf/components/wear_levelling defaults
WL_DEFAULT_START_ADDR = 0
WL_DEFAULT_UPDATERATE = 16
WL_DEFAULT_WRITE_SIZE = 16
WL_DEFAULT_TEMP_BUFF_SIZE = 32
WL_CURRENT_VERSION = 2

CONFIG_SECTION = "fatfsimage"

# ini key -> (ImageConfig attribute, kind)
_INI_OPTIONS = {
    "log_level": ("log_level", "int"),
    "max_path": ("max_path", "int"),
    "strict": ("strict", "bool"),
    "wl_start_addr": ("wl_start_addr", "int"),
    "wl_update_rate": ("wl_update_rate", "int"),
    "wl_write_size": ("wl_write_size", "int"),
    "wl_temp_buff_size": ("wl_temp_buff_size", "int"),
    "wl_version": ("wl_version", "int"),
    "wl_device_id": ("wl_device_id", "int"),
}


@dataclass
class ImageConfig:
    """Everything one image build needs."""

    image: str
    size_kb: int
    paths: List[str] = field(default_factory=list)
    log_level: int = DEFAULT_LEVEL
    strict: bool = False
    sector_size: int = SPI_FLASH_SEC_SIZE
    max_path: int = PATH_MAX
    wl_start_addr: int = WL_DEFAULT_START_ADDR
    wl_update_rate: int = WL_DEFAULT_UPDATERATE
    wl_write_size: int = WL_DEFAULT_WRITE_SIZE
    wl_temp_buff_size: int = WL_DEFAULT_TEMP_BUFF_SIZE
    wl_version: int = WL_CURRENT_VERSION
    wl_device_id: Optional[int] = None

    @property
    def image_bytes(self) -> int:
        return self.size_kb * 1024

    @property
    def sector_count(self) -> int:
        # Remainder bytes past the last whole sector are unusable
        return self.image_bytes // self.sector_size


def read_overrides(config_file: str, profile: Optional[str] = None) -> Dict[str, Any]:
    """
    Read build option overrides from an ini file.

    The common ``[fatfsimage]`` section is read first, then
    ``[fatfsimage:<profile>]`` so profile specific values take precedence.

    Args:
        config_file: Path to the ini file
        profile: Optional profile name

    Returns:
        dict: ImageConfig attribute names mapped to parsed values

    Raises:
        ValueError: If the file cannot be read or a value does not parse
    """
    parser = configparser.ConfigParser()
    if not parser.read(config_file):
        raise ValueError(f"Unable to read configuration file '{config_file}'")

    sections = [CONFIG_SECTION]
    if profile:
        sections.append(f"{CONFIG_SECTION}:{profile}")
        if not parser.has_section(sections[-1]):
            raise ValueError(f"Profile '{profile}' not found in '{config_file}'")

    overrides = {}
    for section in sections:
        if not parser.has_section(section):
            continue
        for key in parser.options(section):
            if key not in _INI_OPTIONS:
                raise ValueError(f"Unknown option '{key}' in section [{section}]")
            attr, kind = _INI_OPTIONS[key]
            if kind == "bool":
                overrides[attr] = parser.getboolean(section, key)
            else:
                overrides[attr] = int(parser.get(section, key), 0)
    return overrides


def apply_overrides(config: ImageConfig, overrides: Dict[str, Any]) -> ImageConfig:
    for attr, value in overrides.items():
        setattr(config, attr, value)
    return config
