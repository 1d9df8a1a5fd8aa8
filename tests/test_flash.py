# test_flash.py
"""
Virtual flash device: erase value, bounds, and read/write over a host file.
"""
import io
import os
import tempfile
import unittest

from fatfsimage.errors import ImageIOError
from fatfsimage.flash import VirtualFlash

from image_helpers import quiet_logger

SECTOR = 4096


class TestVirtualFlash(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "flash.bin")

    def tearDown(self):
        self.tmp.cleanup()

    def make_flash(self, size=16 * SECTOR):
        flash = VirtualFlash.create(self.path, size, SECTOR, quiet_logger())
        self.addCleanup(flash.close)
        return flash

    def test_create_fills_with_erase_value(self):
        flash = self.make_flash()
        flash.close()
        with open(self.path, "rb") as f:
            data = f.read()
        self.assertEqual(len(data), 16 * SECTOR)
        self.assertEqual(data, b"\xff" * len(data))

    def test_clear_caps_last_chunk(self):
        flash = self.make_flash(size=10000)
        self.assertEqual(flash.chip_size(), 10000)
        flash.close()
        self.assertEqual(os.path.getsize(self.path), 10000)

    def test_geometry(self):
        flash = self.make_flash()
        self.assertEqual(flash.chip_size(), 16 * SECTOR)
        self.assertEqual(flash.sector_size(), SECTOR)

    def test_write_then_read(self):
        flash = self.make_flash()
        payload = bytes(range(256)) * 20
        address = flash.chip_size() - len(payload)
        flash.write(address, payload)
        self.assertEqual(flash.read(address, len(payload)), payload)

    def test_unaligned_erase_then_read(self):
        flash = self.make_flash()
        flash.write(0, b"\x00" * (3 * SECTOR))
        flash.erase_range(100, 5000)
        self.assertEqual(flash.read(100, 5000), b"\xff" * 5000)
        self.assertEqual(flash.read(0, 100), b"\x00" * 100)
        self.assertEqual(flash.read(5100, 100), b"\x00" * 100)

    def test_erase_is_idempotent(self):
        flash = self.make_flash()
        flash.write(SECTOR, b"data")
        flash.erase_sector(1)
        flash.erase_sector(1)
        self.assertEqual(flash.read(SECTOR, SECTOR), b"\xff" * SECTOR)

    def test_out_of_bounds_is_rejected(self):
        flash = self.make_flash()
        end = flash.chip_size()
        with self.assertRaises(ImageIOError):
            flash.read(end - 1, 2)
        with self.assertRaises(ImageIOError):
            flash.write(end, b"x")
        with self.assertRaises(ImageIOError):
            flash.erase_range(end - SECTOR, SECTOR + 1)
        with self.assertRaises(ImageIOError):
            flash.read(-1, 1)
        # Nothing past the end was written
        flash.close()
        self.assertEqual(os.path.getsize(self.path), end)

    def test_short_read_is_an_error(self):
        # Backing file shorter than the chip it claims to be
        flash = VirtualFlash(io.BytesIO(b"\xff" * 100), 4 * SECTOR, SECTOR, quiet_logger())
        with self.assertRaises(ImageIOError):
            flash.read(0, 200)

    def test_closed_flash_is_rejected(self):
        flash = self.make_flash()
        flash.close()
        flash.close()
        with self.assertRaises(ImageIOError):
            flash.read(0, 1)

    def test_create_failure_reports_errno(self):
        missing = os.path.join(self.tmp.name, "missing", "flash.bin")
        with self.assertRaises(ImageIOError) as ctx:
            VirtualFlash.create(missing, SECTOR, SECTOR, quiet_logger())
        self.assertIsNotNone(ctx.exception.errno)
        self.assertIn(missing, str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
