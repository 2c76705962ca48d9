import logging
import os
from typing import BinaryIO, List, Optional, Union

import attr

from fscheck import check_consistency
from fsstruct import (
    BLOCK_SIZE,
    MAX_FILE_BLOCKS,
    NUM_BLOCKS,
    ROOT_DIR,
    Inode,
    Superblock,
    decode_name,
    encode_name,
)

logger = logging.getLogger(__name__)

SUPERBLOCK_INDEX = 0
ZERO_BLOCK = b"\x00" * BLOCK_SIZE

CURRENT_DIR = "."
PARENT_DIR = ".."


class FSError(OSError):
    """Base class for every failure reported by the file system"""


class NotMountedError(FSError):
    def __init__(self):
        super().__init__("No file system is mounted")


class DiskNotFoundError(FSError, FileNotFoundError):
    pass


class EntryNotFoundError(FSError, FileNotFoundError):
    pass


class EntryExistsError(FSError, FileExistsError):
    pass


class CapacityError(FSError):
    pass


class NoFreeInodeError(CapacityError):
    pass


class NoSpaceError(CapacityError):
    pass


class BlockRangeError(FSError):
    pass


class InconsistentFileSystemError(FSError):
    def __init__(self, disk_name: str, code: int):
        super().__init__(f"File system in {disk_name} is inconsistent (error code: {code})")
        self.disk_name = disk_name
        self.code = code


@attr.s(auto_attribs=True, frozen=True)
class ListEntry:
    """One line of a directory listing.

    For directories `size` is the entry count (including "." and ".."), for
    files it is the number of blocks.
    """

    name: str
    size: int
    is_directory: bool


class BlockDevice:
    """Whole-block access to an image file"""

    def __init__(self, image_path: str):
        self.image_path = image_path
        if not os.path.isfile(image_path):
            raise DiskNotFoundError(f"Cannot find disk {image_path}")
        self.image_file: Optional[BinaryIO] = open(image_path, "r+b")

    def read_block(self, index: int) -> bytes:
        self._check_index(index)
        self.image_file.seek(index * BLOCK_SIZE)
        data = self.image_file.read(BLOCK_SIZE)
        # Short images read back as zero past their end
        return data + b"\x00" * (BLOCK_SIZE - len(data))

    def write_block(self, index: int, data: bytes):
        self._check_index(index)
        if len(data) != BLOCK_SIZE:
            raise ValueError(f"Block data must be exactly {BLOCK_SIZE} bytes, got {len(data)}")
        self.image_file.seek(index * BLOCK_SIZE)
        self.image_file.write(data)
        self.image_file.flush()
        logger.debug("Wrote block %d of %s", index, self.image_path)

    def close(self):
        if self.image_file:
            self.image_file.close()
            self.image_file = None

    @staticmethod
    def _check_index(index: int):
        if not 0 <= index < NUM_BLOCKS:
            raise ValueError(f"Block index {index} out of range")


class FileSystem:
    """A mounted disk image together with the session state that goes with it:
    the in-memory superblock, the current directory and the transfer buffer.
    """

    def __init__(self):
        self.device: Optional[BlockDevice] = None
        self.superblock: Optional[Superblock] = None
        self.current_dir = ROOT_DIR
        self._buffer = bytearray(BLOCK_SIZE)

    def __enter__(self) -> "FileSystem":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def mounted(self) -> bool:
        return self.device is not None

    @property
    def disk_name(self) -> Optional[str]:
        return self.device.image_path if self.device else None

    @property
    def buffer(self) -> bytes:
        return bytes(self._buffer)

    # Mounting

    def mount(self, image_path: str):
        """Attach an image. A failing check leaves the current session untouched."""
        device = BlockDevice(image_path)
        try:
            superblock = Superblock.unpack(device.read_block(SUPERBLOCK_INDEX))
            superblock.bitmap.mark(0, 1, True)
            code = check_consistency(superblock)
        except Exception:
            device.close()
            raise
        if code != 0:
            device.close()
            logger.warning("Refusing to mount %s: check %d failed", image_path, code)
            raise InconsistentFileSystemError(image_path, code)

        if self.device:
            self.device.close()
        self.device = device
        self.superblock = superblock
        self.current_dir = ROOT_DIR
        self._buffer[:] = bytes(BLOCK_SIZE)
        logger.info("Mounted %s", image_path)

    def unmount(self):
        self.close()

    def close(self):
        if self.device:
            self.device.close()
        self.device = None
        self.superblock = None
        self.current_dir = ROOT_DIR

    # Operations

    def create(self, name: Union[str, bytes], size: int):
        """Create a file of `size` blocks, or a directory when size is 0"""
        self._require_mounted()
        raw_name = self._entry_name(name)
        if not 0 <= size <= MAX_FILE_BLOCKS:
            raise ValueError(f"Invalid size {size}")
        label = decode_name(raw_name)

        if self.superblock.lookup(raw_name, self.current_dir) is not None:
            raise EntryExistsError(f"File or directory {label} already exists")

        index = self.superblock.find_free_inode()
        if index is None:
            raise NoFreeInodeError(f"Superblock in disk {self.disk_name} is full, cannot create {label}")

        start_block = self.superblock.bitmap.find_contiguous(size)
        if start_block is None:
            raise NoSpaceError(f"Cannot allocate {size} blocks on {self.disk_name}")

        inode = self.superblock.inodes[index]
        inode.name = raw_name
        inode.used = True
        inode.size = size
        inode.start_block = start_block
        inode.is_directory = size == 0
        inode.parent = self.current_dir
        if size > 0:
            self.superblock.bitmap.mark(start_block, size, True)
        logger.debug("Created %s in inode %d (start %d, %d blocks)", label, index, start_block, size)

        self._write_superblock()

    def delete(self, name: Union[str, bytes]):
        """Delete a file, or a directory along with everything beneath it"""
        self._require_mounted()
        raw_name = encode_name(name)
        index = self.superblock.lookup(raw_name, self.current_dir)
        if index is None:
            raise EntryNotFoundError(f"File or directory {decode_name(raw_name)} does not exist")
        self._delete_inode(index)
        self._write_superblock()

    def _delete_inode(self, index: int):
        inode = self.superblock.inodes[index]
        if inode.is_directory:
            for child_index, _ in list(self.superblock.children(index)):
                self._delete_inode(child_index)
        else:
            self.superblock.bitmap.mark(inode.start_block, inode.size, False)
            for block in inode.blocks():
                self.device.write_block(block, ZERO_BLOCK)
        logger.debug("Deleted inode %d (%s)", index, inode.display_name)
        inode.clear()

    def read(self, name: Union[str, bytes], block: int) -> bytes:
        """Load block `block` of a file into the transfer buffer"""
        self._require_mounted()
        inode = self.superblock.inodes[self._find_file(name)]
        self._check_file_block(inode, block)
        self._buffer[:] = self.device.read_block(inode.start_block + block)
        return self.buffer

    def write(self, name: Union[str, bytes], block: int):
        """Store the transfer buffer into block `block` of a file"""
        self._require_mounted()
        inode = self.superblock.inodes[self._find_file(name)]
        self._check_file_block(inode, block)
        physical = inode.start_block + block
        if self.superblock.bitmap.is_free(physical):
            raise FSError("Attempting to write to an unallocated block")
        self._write_superblock()
        self.device.write_block(physical, bytes(self._buffer))

    def set_buffer(self, data: Union[str, bytes]):
        if isinstance(data, str):
            data = data.encode("latin-1")
        if len(data) > BLOCK_SIZE:
            raise ValueError(f"Buffer content exceeds {BLOCK_SIZE} bytes")
        self._buffer[:] = bytes(BLOCK_SIZE)
        self._buffer[: len(data)] = data

    def list(self) -> List[ListEntry]:
        """Entries of the current directory, starting with "." and ".." """
        self._require_mounted()
        superblock = self.superblock
        if self.current_dir == ROOT_DIR:
            parent = ROOT_DIR
        else:
            parent = superblock.inodes[self.current_dir].parent

        entries = [
            ListEntry(CURRENT_DIR, superblock.child_count(self.current_dir), True),
            ListEntry(PARENT_DIR, superblock.child_count(parent), True),
        ]
        for index, inode in superblock.children(self.current_dir):
            if inode.is_directory:
                entries.append(ListEntry(inode.display_name, superblock.child_count(index), True))
            else:
                entries.append(ListEntry(inode.display_name, inode.size, False))
        return entries

    def resize(self, name: Union[str, bytes], new_size: int):
        """Grow or shrink a file.

        Growth happens in place when the following blocks are free, otherwise
        the file moves to the first run large enough for the new size.
        """
        self._require_mounted()
        if not 1 <= new_size <= MAX_FILE_BLOCKS:
            raise ValueError(f"Invalid size {new_size}")
        index = self._find_file(name)
        inode = self.superblock.inodes[index]
        bitmap = self.superblock.bitmap
        old_start, old_size = inode.start_block, inode.size

        if new_size > old_size:
            tail_start = old_start + old_size
            if bitmap.range_is_free(tail_start, new_size - old_size):
                bitmap.mark(tail_start, new_size - old_size, True)
            else:
                new_start = bitmap.find_contiguous(new_size)
                if new_start is None:
                    raise NoSpaceError(f"File {inode.display_name} cannot expand to size {new_size}")
                logger.info("Moving %s from block %d to block %d", inode.display_name, old_start, new_start)
                self._move_blocks(old_start, new_start, old_size)
                bitmap.mark(old_start, old_size, False)
                bitmap.mark(new_start, new_size, True)
                inode.start_block = new_start
        elif new_size < old_size:
            for block in range(old_start + new_size, old_start + old_size):
                self.device.write_block(block, ZERO_BLOCK)
            bitmap.mark(old_start + new_size, old_size - new_size, False)

        inode.size = new_size
        self._write_superblock()

    def defragment(self):
        """Pack every file towards block 1, keeping their order on disk"""
        self._require_mounted()
        files = sorted(self.superblock.files(), key=lambda item: item[1].start_block)

        next_free = 1
        moved = 0
        for _, inode in files:
            if inode.start_block != next_free:
                self._move_blocks(inode.start_block, next_free, inode.size)
                inode.start_block = next_free
                moved += 1
            next_free += inode.size

        bitmap = self.superblock.bitmap
        bitmap.reset()
        for _, inode in files:
            bitmap.mark(inode.start_block, inode.size, True)
        logger.info("Defragmented %s: %d of %d files moved", self.disk_name, moved, len(files))

        self._write_superblock()

    def change_directory(self, name: Union[str, bytes]):
        self._require_mounted()
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        if name == CURRENT_DIR:
            return
        if name == PARENT_DIR:
            if self.current_dir != ROOT_DIR:
                self.current_dir = self.superblock.inodes[self.current_dir].parent
            return

        raw_name = encode_name(name)
        index = self.superblock.lookup(raw_name, self.current_dir)
        if index is None or not self.superblock.inodes[index].is_directory:
            raise EntryNotFoundError(f"Directory {decode_name(raw_name)} does not exist")
        self.current_dir = index

    # Helpers

    def _require_mounted(self):
        if not self.mounted:
            raise NotMountedError()

    @staticmethod
    def _entry_name(name: Union[str, bytes]) -> bytes:
        raw_name = encode_name(name)
        if decode_name(raw_name) in (CURRENT_DIR, PARENT_DIR):
            raise ValueError(f"Reserved name {decode_name(raw_name)!r}")
        return raw_name

    def _find_file(self, name: Union[str, bytes]) -> int:
        raw_name = encode_name(name)
        index = self.superblock.lookup(raw_name, self.current_dir)
        if index is None or self.superblock.inodes[index].is_directory:
            raise EntryNotFoundError(f"File {decode_name(raw_name)} does not exist")
        return index

    @staticmethod
    def _check_file_block(inode: Inode, block: int):
        if not 0 <= block < inode.size:
            raise BlockRangeError(f"{inode.display_name} does not have block {block}")

    def _move_blocks(self, old_start: int, new_start: int, count: int):
        """Copy `count` blocks to a new position and zero the ones left behind.

        All data is read before anything is written, so the two ranges may
        overlap.
        """
        data = [self.device.read_block(old_start + i) for i in range(count)]
        new_range = range(new_start, new_start + count)
        for block in range(old_start, old_start + count):
            if block not in new_range:
                self.device.write_block(block, ZERO_BLOCK)
        for i, chunk in enumerate(data):
            self.device.write_block(new_start + i, chunk)

    def _write_superblock(self):
        self.device.write_block(SUPERBLOCK_INDEX, self.superblock.pack())
