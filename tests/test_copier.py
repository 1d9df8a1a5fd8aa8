# test_copier.py
"""
Tree copier: host files and directories into a mounted volume.
"""
import os
import tempfile
import unittest
from unittest import mock

from fatfsimage.copier import TreeCopier
from fatfsimage.errors import (
    ImageIOError,
    PathTooLongError,
    TypeCollisionError,
    UnsupportedEntryError,
)
from fatfsimage.volume import FR_NO_FILE, FR_OK

from image_helpers import MountedImage, quiet_logger, read_image_tree


def write_file(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


class CopierTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.src = os.path.join(self.tmp.name, "src")
        os.mkdir(self.src)
        self.image_path = os.path.join(self.tmp.name, "image.bin")
        self.image = MountedImage(self.image_path)
        self.closed = False
        self.addCleanup(self.close_image)
        self.volume = self.image.volume

    def close_image(self):
        if not self.closed:
            self.closed = True
            self.image.close()

    def make_copier(self, **kwargs):
        return TreeCopier(self.volume, quiet_logger(), **kwargs)


class TestTreeCopy(CopierTestCase):
    def test_copies_tree_into_root(self):
        write_file(os.path.join(self.src, "a.txt"), b"hello world\n")
        write_file(os.path.join(self.src, "sub", "b.txt"), b"xyz")
        os.mkdir(os.path.join(self.src, "empty"))

        copier = self.make_copier()
        self.assertTrue(copier.copy(self.src))
        self.assertEqual(copier.directories_created, 2)
        self.assertEqual(copier.files_copied, 2)
        self.assertEqual(copier.failures, [])

        ret, info = self.volume.stat("sub/b.txt")
        self.assertEqual(ret, FR_OK)
        self.assertEqual(info.size, 3)

        self.close_image()
        self.assertEqual(
            read_image_tree(self.image_path),
            {"a.txt": b"hello world\n", "sub": None, "sub/b.txt": b"xyz", "empty": None},
        )

    def test_multi_sector_file(self):
        payload = os.urandom(3 * 4096 + 123)
        write_file(os.path.join(self.src, "big.bin"), payload)
        copier = self.make_copier()
        self.assertTrue(copier.copy(self.src))
        self.close_image()
        self.assertEqual(read_image_tree(self.image_path)["big.bin"], payload)

    def test_name_case_is_kept(self):
        write_file(os.path.join(self.src, "MixedCase.Txt"), b"1")
        write_file(os.path.join(self.src, "Sub", "UPPER.BIN"), b"2")
        self.assertTrue(self.make_copier().copy(self.src))
        self.close_image()
        self.assertEqual(
            read_image_tree(self.image_path),
            {"MixedCase.Txt": b"1", "Sub": None, "Sub/UPPER.BIN": b"2"},
        )

    def test_existing_directory_is_merged(self):
        self.volume.mkdir("sub")
        write_file(os.path.join(self.src, "sub", "b.txt"), b"xyz")
        copier = self.make_copier()
        self.assertTrue(copier.copy(self.src))
        self.assertEqual(copier.directories_created, 0)
        self.assertEqual(copier.files_copied, 1)

    def test_file_into_existing_directory(self):
        source = os.path.join(self.src, "readme.txt")
        write_file(source, b"read me")
        self.volume.mkdir("docs")

        copier = self.make_copier()
        self.assertTrue(copier.copy(source, "docs"))
        ret, info = self.volume.stat("docs/readme.txt")
        self.assertEqual(ret, FR_OK)
        self.assertEqual(info.size, 7)

    def test_file_into_root(self):
        source = os.path.join(self.src, "top.txt")
        write_file(source, b"top")
        self.assertTrue(self.make_copier().copy(source))
        self.assertEqual(self.volume.stat("top.txt")[0], FR_OK)

    def test_existing_file_is_truncated(self):
        long_file = os.path.join(self.src, "long.txt")
        short_file = os.path.join(self.src, "short.txt")
        write_file(long_file, b"a much longer content")
        write_file(short_file, b"short")

        copier = self.make_copier()
        self.assertTrue(copier.copy(long_file, "x.txt"))
        self.assertTrue(copier.copy(short_file, "x.txt"))
        self.assertEqual(copier.files_copied, 2)
        self.assertEqual(self.volume.stat("x.txt")[1].size, 5)


class TestCopyFailures(CopierTestCase):
    def test_directory_onto_file(self):
        source_file = os.path.join(self.tmp.name, "data")
        write_file(source_file, b"file")
        write_file(os.path.join(self.src, "inner.txt"), b"inner")

        copier = self.make_copier()
        self.assertTrue(copier.copy(source_file, "data"))
        self.assertFalse(copier.copy(self.src, "data"))
        self.assertEqual(len(copier.failures), 1)
        self.assertIsInstance(copier.failures[0][1], TypeCollisionError)
        self.assertEqual(copier.directories_created, 0)
        self.assertEqual(self.volume.stat("data")[1].size, 4)

    def test_file_onto_directory_inside_target(self):
        source = os.path.join(self.src, "clash")
        write_file(source, b"x")
        self.volume.mkdir("docs")
        self.volume.mkdir("docs/clash")

        copier = self.make_copier()
        self.assertFalse(copier.copy(source, "docs"))
        self.assertIsInstance(copier.failures[0][1], TypeCollisionError)
        self.assertEqual(copier.files_copied, 0)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlink_is_unsupported_and_siblings_continue(self):
        target = os.path.join(self.tmp.name, "target.txt")
        write_file(target, b"target")
        write_file(os.path.join(self.src, "a.txt"), b"a")
        link = os.path.join(self.src, "link.txt")
        try:
            os.symlink(target, link)
        except OSError:
            self.skipTest("cannot create symlinks here")

        copier = self.make_copier()
        self.assertFalse(copier.copy(self.src))
        self.assertEqual(len(copier.failures), 1)
        path, error = copier.failures[0]
        self.assertEqual(path, link)
        self.assertIsInstance(error, UnsupportedEntryError)
        self.assertEqual(copier.files_copied, 1)
        self.assertEqual(self.volume.stat("link.txt")[0], FR_NO_FILE)

    def test_long_entry_is_skipped(self):
        write_file(os.path.join(self.src, "ok.txt"), b"ok")
        write_file(os.path.join(self.src, "much_longer_name.txt"), b"too long")
        max_path = len(os.fsencode(self.src)) + 10

        copier = self.make_copier(max_path=max_path)
        self.assertFalse(copier.copy(self.src))
        self.assertEqual(len(copier.failures), 1)
        error = copier.failures[0][1]
        self.assertIsInstance(error, PathTooLongError)
        self.assertEqual(error.side, "source")
        self.assertEqual(copier.files_copied, 1)
        self.assertEqual(self.volume.stat("ok.txt")[0], FR_OK)
        self.assertEqual(self.volume.stat("much_longer_name.txt")[0], FR_NO_FILE)

    def test_long_target_is_reported(self):
        source = os.path.join(self.src, "file.txt")
        write_file(source, b"x")
        max_path = len(os.fsencode(source)) + 1
        # The directory fits, the directory plus "/file.txt" does not
        target = "d" * (max_path - 9)
        self.volume.mkdir(target)

        copier = self.make_copier(max_path=max_path)
        self.assertFalse(copier.copy(source, target))
        error = copier.failures[0][1]
        self.assertIsInstance(error, PathTooLongError)
        self.assertEqual(error.side, "target")
        self.assertEqual(copier.files_copied, 0)

    def test_source_path_too_long(self):
        copier = self.make_copier()
        self.assertFalse(copier.copy("x" * 5000))
        self.assertIsInstance(copier.failures[0][1], PathTooLongError)
        self.assertEqual(copier.directories_created, 0)
        self.assertEqual(copier.files_copied, 0)

    def test_missing_source(self):
        copier = self.make_copier()
        self.assertFalse(copier.copy(os.path.join(self.src, "missing")))
        self.assertIsInstance(copier.failures[0][1], ImageIOError)

    def test_write_failure_removes_partial_file(self):
        write_file(os.path.join(self.src, "big.bin"), os.urandom(10000))
        write_file(os.path.join(self.src, "small.txt"), b"small")

        real_write = self.volume.write
        writes = []

        def failing_write(fh, data):
            writes.append(len(data))
            if len(writes) == 2:
                raise ImageIOError("Simulated write failure")
            real_write(fh, data)

        copier = self.make_copier()
        with mock.patch.object(self.volume, "write", side_effect=failing_write):
            # big.bin needs three writes; the second one fails
            with mock.patch("os.listdir", return_value=["big.bin", "small.txt"]):
                self.assertFalse(copier.copy(self.src))

        self.assertEqual(self.volume.stat("big.bin")[0], FR_NO_FILE)
        self.assertEqual(self.volume.stat("small.txt")[0], FR_OK)
        self.assertEqual(copier.files_copied, 1)
        self.assertEqual(len(copier.failures), 1)

        self.close_image()
        self.assertNotIn("big.bin", read_image_tree(self.image_path))


if __name__ == "__main__":
    unittest.main()
