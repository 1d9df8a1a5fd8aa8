# image_helpers.py
"""
Shared setup for the image tests: a formatted, mounted volume in a temporary
image file, and a reader that mounts a finished image read-only in RAM.
"""
from fatfs import RamDisk, create_extended_partition, extract_fat_from_esp32_wl

from fatfsimage.config import SPI_FLASH_SEC_SIZE
from fatfsimage.disk import WearLevelingDisk
from fatfsimage.flash import VirtualFlash
from fatfsimage.log import LOG_NONE, ImageLogger
from fatfsimage.volume import FatVolume
from fatfsimage.wear_leveling import WearLeveling, WLConfig

DEVICE_ID = 0x12345678


def quiet_logger():
    return ImageLogger(LOG_NONE)


def make_wl_config(full_mem_size, sector_size=SPI_FLASH_SEC_SIZE, **overrides):
    values = dict(
        start_addr=0,
        full_mem_size=full_mem_size,
        page_size=sector_size,
        sector_size=sector_size,
        updaterate=16,
        wr_size=16,
        version=2,
        temp_buff_size=32,
    )
    values.update(overrides)
    return WLConfig(**values)


class MountedImage:
    """Image file with a freshly formatted and mounted FAT volume."""

    def __init__(self, path, size_kb=1024):
        logger = quiet_logger()
        size = size_kb * 1024
        self.path = path
        self.flash = VirtualFlash.create(path, size, SPI_FLASH_SEC_SIZE, logger)
        self.wl = WearLeveling(logger, device_id=DEVICE_ID)
        self.wl.configure(make_wl_config(size), self.flash)
        self.wl.initialize()
        self.disk = WearLevelingDisk(self.wl, logger)
        self.volume = FatVolume(self.disk, logger)
        self.volume.format()
        self.volume.mount()

    def close(self):
        try:
            self.volume.unmount()
        finally:
            self.flash.close()


def read_image_tree(path, sector_size=SPI_FLASH_SEC_SIZE):
    """
    Map every entry of a finished image to its contents.

    Keys are paths relative to the volume root, in the case they were
    written in; directories map to None.
    """
    with open(path, "rb") as f:
        data = f.read()
    fat = extract_fat_from_esp32_wl(data, sector_size)
    if fat is None:
        raise AssertionError(f"'{path}' is not a wear-levelled image")

    disk = RamDisk(bytearray(fat), sector_size=sector_size)
    partition = create_extended_partition(disk)
    partition.mount()
    tree = {}
    try:
        for root, dirs, files in partition.walk("/"):
            prefix = root.rstrip("/")
            for name in dirs:
                tree[(prefix + "/" + name).lstrip("/")] = None
            for name in files:
                entry = prefix + "/" + name
                tree[entry.lstrip("/")] = partition.read_file(entry)
    finally:
        partition.unmount()
    return tree
