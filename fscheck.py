"""
Structural consistency checks run against a superblock before it is mounted.

The checks run in a fixed order and the first failing one decides the
result, so an image violating several rules reports the lowest code.
"""

import enum
import logging

from fsstruct import INVALID_PARENT, NUM_BLOCKS, NUM_INODES, ROOT_DIR, Superblock

logger = logging.getLogger(__name__)


class Violation(enum.IntEnum):
    NONE = 0
    FREE_INODE_NOT_ZERO = 1
    FILE_BLOCKS_OUT_OF_RANGE = 2
    DIRECTORY_HAS_BLOCKS = 3
    BAD_PARENT = 4
    DUPLICATE_NAME = 5
    BITMAP_MISMATCH = 6


def _check_free_inodes(superblock: Superblock) -> bool:
    for inode in superblock.inodes:
        if inode.used:
            continue
        if inode.size or inode.start_block or inode.parent or inode.is_directory:
            return False
        if any(inode.name):
            return False
    return True


def _check_file_ranges(superblock: Superblock) -> bool:
    for inode in superblock.inodes:
        if not inode.is_file:
            continue
        if not 1 <= inode.start_block <= NUM_BLOCKS - 1:
            return False
        if inode.start_block + inode.size - 1 > NUM_BLOCKS - 1:
            return False
    return True


def _check_directories(superblock: Superblock) -> bool:
    for inode in superblock.inodes:
        if inode.used and inode.is_directory:
            if inode.start_block != 0 or inode.size != 0:
                return False
    return True


def _check_parents(superblock: Superblock) -> bool:
    for inode in superblock.inodes:
        if not inode.used:
            continue
        parent = inode.parent
        if parent == ROOT_DIR:
            continue
        if parent == INVALID_PARENT or parent >= NUM_INODES:
            return False
        parent_inode = superblock.inodes[parent]
        if not (parent_inode.used and parent_inode.is_directory):
            return False
    return True


def _check_unique_names(superblock: Superblock) -> bool:
    seen = set()
    for inode in superblock.inodes:
        if not inode.used:
            continue
        key = (inode.parent, inode.name)
        if key in seen:
            return False
        seen.add(key)
    return True


def _check_bitmap(superblock: Superblock) -> bool:
    """Bitmap must match the union of file ranges, with no block claimed twice"""
    claimed = [False] * NUM_BLOCKS
    claimed[0] = True
    for _, inode in superblock.files():
        for block in inode.blocks():
            if claimed[block]:
                return False
            claimed[block] = True
    return all(superblock.bitmap.is_used(block) == claimed[block] for block in range(NUM_BLOCKS))


_CHECKS = [
    (Violation.FREE_INODE_NOT_ZERO, _check_free_inodes),
    (Violation.FILE_BLOCKS_OUT_OF_RANGE, _check_file_ranges),
    (Violation.DIRECTORY_HAS_BLOCKS, _check_directories),
    (Violation.BAD_PARENT, _check_parents),
    (Violation.DUPLICATE_NAME, _check_unique_names),
    (Violation.BITMAP_MISMATCH, _check_bitmap),
]


def check_consistency(superblock: Superblock) -> int:
    """Return the code of the first violated rule, or 0 when the table is sound"""
    for violation, check in _CHECKS:
        if not check(superblock):
            logger.debug("Consistency check %s failed", violation.name)
            return int(violation)
    return int(Violation.NONE)
