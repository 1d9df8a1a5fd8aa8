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
Error kinds raised while building an image.

Host errno values, FatFs result codes and wear-leveling status codes all end
up as one of the ImageError subclasses below. Collaborator codes are carried
unchanged on LibraryError so nothing is coerced into a shared integer space.
"""

from typing import Optional

# FatFs FRESULT values (ff.h)
FRESULT_NAMES = (
    "FR_OK",
    "FR_DISK_ERR",
    "FR_INT_ERR",
    "FR_NOT_READY",
    "FR_NO_FILE",
    "FR_NO_PATH",
    "FR_INVALID_NAME",
    "FR_DENIED",
    "FR_EXIST",
    "FR_INVALID_OBJECT",
    "FR_WRITE_PROTECTED",
    "FR_INVALID_DRIVE",
    "FR_NOT_ENABLED",
    "FR_NO_FILESYSTEM",
    "FR_MKFS_ABORTED",
    "FR_TIMEOUT",
    "FR_LOCKED",
    "FR_NOT_ENOUGH_CORE",
    "FR_TOO_MANY_OPEN_FILES",
    "FR_INVALID_PARAMETER",
)

# esp_err_t values used by the wear-leveling layer (esp_err.h)
ESP_ERR_INVALID_ARG = 0x102
ESP_ERR_INVALID_STATE = 0x103
ESP_ERR_INVALID_SIZE = 0x104

ESP_ERR_NAMES = {
    ESP_ERR_INVALID_ARG: "ESP_ERR_INVALID_ARG",
    ESP_ERR_INVALID_STATE: "ESP_ERR_INVALID_STATE",
    ESP_ERR_INVALID_SIZE: "ESP_ERR_INVALID_SIZE",
}


def fresult_to_name(code: int) -> str:
    if 0 <= code < len(FRESULT_NAMES):
        return FRESULT_NAMES[code]
    return "UNKNOWN_%i" % code


def esp_err_to_name(code: int) -> str:
    return ESP_ERR_NAMES.get(code, "UNKNOWN_0x%x" % code)


class ImageError(Exception):
    """Base class for every failure raised by the image pipeline."""


class ImageIOError(ImageError):
    """
    Host or flash I/O failure.

    Args:
        message: What failed
        path: Offending host or image path, if any
        errno: Underlying error number, if any
    """

    def __init__(self, message: str, path: Optional[str] = None, errno: Optional[int] = None):
        self.path = path
        self.errno = errno
        details = message
        if path is not None:
            details += f" for '{path}'"
        if errno is not None:
            details += f" (errno {errno})"
        super().__init__(details)


class PathTooLongError(ImageError):
    """A path would not fit within the maximum path length."""

    def __init__(self, side: str, path: str, max_length: int):
        self.side = side
        self.path = path
        self.max_length = max_length
        super().__init__(f"{side.capitalize()} name '{path}' is too long")


class TypeCollisionError(ImageError):
    """A directory was found where a file is required, or the other way round."""


class UnsupportedEntryError(ImageError):
    """Host entry is neither a regular file nor a directory."""


class LibraryError(ImageError):
    """
    Failure reported by an external collaborator.

    Mirrors fatfs' FatFSException(function, ret, *args): the collaborator's
    own result code is kept on ``code`` and rendered by name.
    """

    def __init__(self, function: str, code: int, *args, esp: bool = False):
        self.function = function
        self.code = code
        self.name = esp_err_to_name(code) if esp else fresult_to_name(code)
        args_str = ", ".join(map(str, args))
        super().__init__(
            "%s(%s) failed with error code %i (%s)" % (function, args_str, code, self.name)
        )
