#!/usr/bin/env python3
"""
Tests for the on-disk structures: names, inode records, bitmap allocation
"""

import os

from fsstruct import (
    BLOCK_SIZE,
    NUM_BLOCKS,
    NUM_INODES,
    ROOT_DIR,
    Bitmap,
    Inode,
    InodeKind,
    Superblock,
    decode_name,
    encode_name,
)
from mkfs import mkfs
from testutil import TestCase, TestRunner


class TestNames(TestCase):

    def test_name_is_zero_padded(self):
        self.assertEqual(encode_name("ab"), b"ab\x00\x00\x00")
        self.assertEqual(encode_name(b"abcde"), b"abcde")
        self.assertEqual(decode_name(b"ab\x00\x00\x00"), "ab")

    def test_bad_names_rejected(self):
        self.assertRaises(ValueError, encode_name, "")
        self.assertRaises(ValueError, encode_name, "abcdef")

    def test_high_byte_names_round_trip(self):
        raw = encode_name(b"\xe9t\xe9")
        self.assertEqual(raw, b"\xe9t\xe9\x00\x00")
        self.assertEqual(encode_name(decode_name(raw)), raw)


class TestInodeRecord(TestCase):

    def test_file_record_layout(self):
        inode = Inode(name=encode_name("abc"), used=True, size=3, start_block=10, parent=ROOT_DIR)
        self.assertEqual(inode.pack(), b"abc\x00\x00" + bytes([0x83, 10, 0x7F]))
        self.assertEqual(inode.kind, InodeKind.FILE)
        self.assertEqual(list(inode.blocks()), [10, 11, 12])

    def test_directory_record_layout(self):
        inode = Inode(name=encode_name("dir"), used=True, is_directory=True, parent=5)
        data = inode.pack()
        self.assertEqual(data[5:], bytes([0x80, 0, 0x85]))

        decoded = Inode.unpack(data)
        self.assertEqual(decoded, inode)
        self.assertEqual(decoded.kind, InodeKind.DIRECTORY)
        self.assertEqual(list(decoded.blocks()), [])

    def test_free_record_keeps_stray_fields(self):
        decoded = Inode.unpack(b"\x00" * 5 + bytes([0x02, 0, 0x80]))
        self.assertEqual(decoded.kind, InodeKind.FREE)
        self.assertEqual(decoded.size, 2)
        self.assertTrue(decoded.is_directory)

    def test_clear(self):
        inode = Inode(name=encode_name("x"), used=True, size=4, start_block=9, parent=3)
        inode.clear()
        self.assertEqual(inode, Inode())
        self.assertEqual(inode.pack(), b"\x00" * 8)


class TestBitmap(TestCase):

    def test_zero_size_gives_block_zero(self):
        self.assertEqual(Bitmap().find_contiguous(0), 0)

    def test_first_fit_skips_block_zero(self):
        bitmap = Bitmap()
        self.assertEqual(bitmap.find_contiguous(3), 1)
        self.assertEqual(bitmap.find_contiguous(NUM_BLOCKS - 1), 1)
        self.assertEqual(bitmap.find_contiguous(NUM_BLOCKS), None)

    def test_first_fit_finds_first_large_enough_gap(self):
        bitmap = Superblock.blank().bitmap
        bitmap.mark(1, 3, True)
        bitmap.mark(5, 1, True)
        self.assertEqual(bitmap.find_contiguous(1), 4)
        self.assertEqual(bitmap.find_contiguous(2), 6)

    def test_bit_order(self):
        bitmap = Bitmap()
        bitmap.mark(0, 1, True)
        bitmap.mark(9, 2, True)
        self.assertEqual(bitmap.pack()[:2], bytes([0x01, 0x06]))
        self.assertEqual(bitmap.used_blocks(), [0, 9, 10])

    def test_block_zero_stays_used(self):
        bitmap = Superblock.blank().bitmap
        bitmap.mark(0, 4, False)
        self.assertTrue(bitmap.is_used(0))

    def test_mark_ignores_out_of_range_blocks(self):
        bitmap = Superblock.blank().bitmap
        bitmap.mark(NUM_BLOCKS - 2, 5, True)
        bitmap.mark(-3, 2, True)
        self.assertEqual(bitmap.used_blocks(), [0, NUM_BLOCKS - 2, NUM_BLOCKS - 1])

    def test_range_is_free(self):
        bitmap = Superblock.blank().bitmap
        bitmap.mark(4, 1, True)
        self.assertTrue(bitmap.range_is_free(1, 3))
        self.assertFalse(bitmap.range_is_free(3, 2))
        self.assertFalse(bitmap.range_is_free(NUM_BLOCKS - 1, 2))

    def test_reset(self):
        bitmap = Superblock.blank().bitmap
        bitmap.mark(1, 50, True)
        bitmap.reset()
        self.assertEqual(bitmap.used_blocks(), [0])


class TestSuperblock(TestCase):

    def test_fills_exactly_one_block(self):
        superblock = Superblock.blank()
        self.assertEqual(len(superblock.pack()), BLOCK_SIZE)
        self.assertEqual(len(superblock.inodes), NUM_INODES)

    def test_blank_image(self):
        path = os.path.join(self.workdir, "blank")
        mkfs(path)
        self.assertEqual(os.path.getsize(path), NUM_BLOCKS * BLOCK_SIZE)
        superblock = self.disk_superblock(path)
        self.assertEqual(superblock.bitmap.used_blocks(), [0])
        self.assertTrue(all(inode == Inode() for inode in superblock.inodes))

    def test_mkfs_refuses_to_overwrite(self):
        self.assertRaises(FileExistsError, mkfs, self.image_path)
        mkfs(self.image_path, force=True)

    def test_table_round_trip(self):
        superblock = Superblock.blank()
        superblock.inodes[7] = Inode(name=encode_name("f"), used=True, size=2, start_block=3, parent=ROOT_DIR)
        superblock.bitmap.mark(3, 2, True)
        decoded = Superblock.unpack(superblock.pack())
        self.assertEqual(decoded, superblock)

    def test_lookup_and_children(self):
        superblock = Superblock.blank()
        superblock.inodes[0] = Inode(name=encode_name("d"), used=True, is_directory=True, parent=ROOT_DIR)
        superblock.inodes[1] = Inode(name=encode_name("f"), used=True, size=1, start_block=1, parent=0)
        superblock.inodes[2] = Inode(name=encode_name("f"), used=True, size=1, start_block=2, parent=ROOT_DIR)

        self.assertEqual(superblock.lookup(encode_name("f"), 0), 1)
        self.assertEqual(superblock.lookup(encode_name("f"), ROOT_DIR), 2)
        self.assertEqual(superblock.lookup(encode_name("g"), ROOT_DIR), None)
        self.assertEqual(superblock.child_count(ROOT_DIR), 4)
        self.assertEqual(superblock.child_count(0), 3)
        self.assertEqual(superblock.find_free_inode(), 3)
        self.assertEqual([index for index, _ in superblock.files()], [1, 2])


if __name__ == "__main__":
    runner = TestRunner()
    runner.run(TestNames)
    runner.run(TestInodeRecord)
    runner.run(TestBitmap)
    runner.run(TestSuperblock)
    runner.summary()
