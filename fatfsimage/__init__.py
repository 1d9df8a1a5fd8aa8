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

"""Build wear-leveled FAT filesystem images for ESP32 flash partitions."""

from .builder import BuildReport, BuildState, ImageBuilder
from .config import ImageConfig
from .errors import (
    ImageError,
    ImageIOError,
    LibraryError,
    PathTooLongError,
    TypeCollisionError,
    UnsupportedEntryError,
)

__version__ = "1.0.0"

__all__ = [
    "BuildReport",
    "BuildState",
    "ImageBuilder",
    "ImageConfig",
    "ImageError",
    "ImageIOError",
    "LibraryError",
    "PathTooLongError",
    "TypeCollisionError",
    "UnsupportedEntryError",
]
