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
Image build pipeline.

ImageBuilder runs the stages in a fixed order, each one a precondition for
the next:

    Unparsed -> ImageAllocated -> FlashConfigured -> FilesystemFormatted
             -> FilesystemMounted -> FilesPopulated -> Reported -> Closed

A failing stage skips the rest and goes straight to Closed after releasing
whatever was acquired. Bytes already written to the image stay there; a
failed run leaves a file that must be discarded.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .config import ImageConfig
from .copier import TreeCopier
from .disk import WearLevelingDisk
from .errors import ImageError, ImageIOError
from .flash import VirtualFlash
from .log import ImageLogger
from .volume import FatVolume
from .wear_leveling import WearLeveling, WLConfig

MAX_LISTED_FAILURES = 10


class BuildState(Enum):
    UNPARSED = "Unparsed"
    IMAGE_ALLOCATED = "ImageAllocated"
    FLASH_CONFIGURED = "FlashConfigured"
    FILESYSTEM_FORMATTED = "FilesystemFormatted"
    FILESYSTEM_MOUNTED = "FilesystemMounted"
    FILES_POPULATED = "FilesPopulated"
    REPORTED = "Reported"
    CLOSED = "Closed"


@dataclass
class BuildReport:
    """Counters and geometry printed at the end of a build."""

    image: str
    image_bytes: int
    directories_created: int = 0
    files_copied: int = 0
    flash_sector_size: int = 0
    flash_sectors: int = 0
    fs_type: str = ""
    fs_sector_size: int = 0
    fs_sectors: int = 0
    cluster_size: int = 0
    total_clusters: int = 0
    free_clusters: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def lines(self) -> List[str]:
        return [
            "Filesystem created",
            "",
            f"  directories created: {self.directories_created}",
            f"  files copied: {self.files_copied}",
            "",
            f"  flash sector size: {self.flash_sector_size}",
            f"  flash sectors: {self.flash_sectors}",
            "",
            f"  filesystem type: {self.fs_type}",
            f"  filesystem sector size: {self.fs_sector_size}",
            f"  filesystem sectors: {self.fs_sectors}",
            f"  filesystem cluster size: {self.cluster_size}",
            f"  filesystem total clusters: {self.total_clusters}",
            f"  filesystem free clusters: {self.free_clusters}",
        ]


class ImageBuilder:
    """
    Builds one image as described by an ImageConfig.

    Args:
        config: Build configuration
        logger: Optional logger; created from config.log_level if omitted
    """

    def __init__(self, config: ImageConfig, logger: Optional[ImageLogger] = None):
        self.config = config
        self.logger = logger or ImageLogger(config.log_level)
        self.state = BuildState.UNPARSED
        self.failed_state: Optional[BuildState] = None
        self.flash: Optional[VirtualFlash] = None
        self.wl: Optional[WearLeveling] = None
        self.disk: Optional[WearLevelingDisk] = None
        self.volume: Optional[FatVolume] = None
        self.copier: Optional[TreeCopier] = None
        self.report: Optional[BuildReport] = None

    def run(self) -> BuildReport:
        """
        Run every stage and close the image.

        Returns:
            BuildReport: Summary of the finished build

        Raises:
            ImageError: If a stage fails, or in strict mode if any source
                entry could not be copied
        """
        stages = (
            (BuildState.IMAGE_ALLOCATED, self._allocate_image),
            (BuildState.FLASH_CONFIGURED, self._configure_flash),
            (BuildState.FILESYSTEM_FORMATTED, self._format_filesystem),
            (BuildState.FILESYSTEM_MOUNTED, self._mount_filesystem),
            (BuildState.FILES_POPULATED, self._load_files),
            (BuildState.REPORTED, self._report),
        )
        try:
            for state, action in stages:
                self.logger.verbose(f"Entering {state.value}")
                try:
                    action()
                except ImageError as e:
                    self.failed_state = state
                    self.logger.error(f"{state.value} failed: {e}")
                    raise
                self.state = state
        except BaseException:
            # The stage error is the one the caller gets
            try:
                self._close()
            except ImageError as e:
                self.logger.debug(f"Ignoring close failure after failed stage: {e}")
            raise
        self._close()

        if self.config.strict and not self.report.ok:
            message = f"{len(self.report.failures)} source entries could not be copied (strict mode)"
            self.logger.error(message)
            raise ImageError(message)
        self.logger.info(f"Image '{self.config.image}' written ({self.config.image_bytes} bytes)")
        return self.report

    def _allocate_image(self) -> None:
        cfg = self.config
        self.logger.debug(f"Creating '{cfg.image}' with {cfg.image_bytes} bytes")
        unused = cfg.image_bytes % cfg.sector_size
        if unused:
            self.logger.warning(
                f"Image size is not a multiple of {cfg.sector_size}; "
                f"the last {unused} bytes stay erased"
            )
        self.flash = VirtualFlash.create(cfg.image, cfg.image_bytes, cfg.sector_size, self.logger)

    def _configure_flash(self) -> None:
        cfg = self.config
        self.logger.debug("Initializing wear levelling")
        wl_config = WLConfig(
            start_addr=cfg.wl_start_addr,
            full_mem_size=cfg.sector_count * cfg.sector_size - cfg.wl_start_addr,
            page_size=cfg.sector_size,
            sector_size=cfg.sector_size,
            updaterate=cfg.wl_update_rate,
            wr_size=cfg.wl_write_size,
            version=cfg.wl_version,
            temp_buff_size=cfg.wl_temp_buff_size,
        )
        self.wl = WearLeveling(self.logger, device_id=cfg.wl_device_id)
        self.wl.configure(wl_config, self.flash)
        self.wl.initialize()

    def _format_filesystem(self) -> None:
        self.logger.debug("Creating filesystem within image")
        self.disk = WearLevelingDisk(self.wl, self.logger)
        self.volume = FatVolume(self.disk, self.logger)
        self.volume.format()

    def _mount_filesystem(self) -> None:
        self.volume.mount()

    def _load_files(self) -> None:
        self.logger.debug("Loading files")
        self.copier = TreeCopier(
            self.volume,
            self.logger,
            max_path=self.config.max_path,
            buffer_size=self.config.sector_size,
        )
        # Every path is attempted; failures are collected for the report
        for path in self.config.paths:
            self.copier.copy(path)

    def _report(self) -> None:
        cfg = self.config
        info = self.volume.info()
        self.report = BuildReport(
            image=cfg.image,
            image_bytes=cfg.image_bytes,
            directories_created=self.copier.directories_created,
            files_copied=self.copier.files_copied,
            flash_sector_size=cfg.sector_size,
            flash_sectors=cfg.image_bytes // cfg.sector_size,
            fs_type=info.fat_type,
            fs_sector_size=info.sector_size,
            fs_sectors=cfg.image_bytes // info.sector_size,
            cluster_size=info.cluster_size,
            total_clusters=info.total_clusters,
            free_clusters=info.free_clusters,
            failures=[(path, str(error)) for path, error in self.copier.failures],
        )

        for line in self.report.lines():
            print(line)

        failures = self.report.failures
        if failures:
            print(f"\nWarning: {len(failures)} source entries could not be copied:")
            for path, reason in failures[:MAX_LISTED_FAILURES]:
                print(f"  - {path}: {reason}")
            if len(failures) > MAX_LISTED_FAILURES:
                print(f"  ... and {len(failures) - MAX_LISTED_FAILURES} more")

    def _close(self) -> None:
        """Unmount and close the image file, whichever of them is open."""
        try:
            if self.volume is not None:
                self.volume.unmount()
        except ImageError as e:
            self.logger.error(f"Unmount failed: {e}")
            raise
        finally:
            self.state = BuildState.CLOSED
            if self.flash is not None:
                try:
                    self.flash.close()
                except OSError as e:
                    self.logger.error(f"Close failed for '{self.config.image}': {e}")
                    raise ImageIOError("Close failed", self.config.image, e.errno) from e
