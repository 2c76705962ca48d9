import enum
import struct
from typing import Iterator, List, Optional, Tuple, Union

import attr

BLOCK_SIZE = 1024
NUM_BLOCKS = 128
NUM_INODES = 126

NAME_LENGTH = 5
BITMAP_SIZE = NUM_BLOCKS // 8
INODE_SIZE = 8  # name[5] + used_size + start_block + dir_parent
MAX_FILE_BLOCKS = 0x7F

# Parent index values with special meaning
INVALID_PARENT = 126
ROOT_DIR = 127  # no-parent sentinel, also the index of the root directory

USED_FLAG = 0x80
DIRECTORY_FLAG = 0x80
LOW_BITS = 0x7F

assert BITMAP_SIZE + NUM_INODES * INODE_SIZE == BLOCK_SIZE


def encode_name(name: Union[str, bytes]) -> bytes:
    """Convert a user supplied name into the fixed 5-byte field"""
    if isinstance(name, str):
        name = name.encode("latin-1")
    if not name or len(name) > NAME_LENGTH:
        raise ValueError(f"Invalid name {name!r}: must be 1 to {NAME_LENGTH} bytes")
    return name.ljust(NAME_LENGTH, b"\x00")


def decode_name(raw: bytes) -> str:
    return raw.rstrip(b"\x00").decode("latin-1")


class InodeKind(enum.Enum):
    FREE = "free"
    FILE = "file"
    DIRECTORY = "directory"


@attr.s(auto_attribs=True)
class Inode:
    """One record of the inode table.

    The in-use and directory flags are kept as booleans; they are folded into
    the size and parent bytes only by pack()/unpack().
    """

    name: bytes = b"\x00" * NAME_LENGTH
    used: bool = False
    size: int = 0
    start_block: int = 0
    is_directory: bool = False
    parent: int = 0

    @property
    def kind(self) -> InodeKind:
        if not self.used:
            return InodeKind.FREE
        if self.is_directory:
            return InodeKind.DIRECTORY
        return InodeKind.FILE

    @property
    def is_file(self) -> bool:
        return self.kind is InodeKind.FILE

    @property
    def display_name(self) -> str:
        return decode_name(self.name)

    def blocks(self) -> range:
        """Data blocks owned by this record (empty for directories)"""
        if not self.is_file:
            return range(0)
        return range(self.start_block, self.start_block + self.size)

    def clear(self):
        self.name = b"\x00" * NAME_LENGTH
        self.used = False
        self.size = 0
        self.start_block = 0
        self.is_directory = False
        self.parent = 0

    def pack(self) -> bytes:
        used_size = (USED_FLAG if self.used else 0) | (self.size & LOW_BITS)
        dir_parent = (DIRECTORY_FLAG if self.is_directory else 0) | (self.parent & LOW_BITS)
        return struct.pack("<5sBBB", self.name, used_size, self.start_block, dir_parent)

    @classmethod
    def unpack(cls, data: bytes) -> "Inode":
        name, used_size, start_block, dir_parent = struct.unpack("<5sBBB", data[:INODE_SIZE])
        return cls(
            name=name,
            used=bool(used_size & USED_FLAG),
            size=used_size & LOW_BITS,
            start_block=start_block,
            is_directory=bool(dir_parent & DIRECTORY_FLAG),
            parent=dir_parent & LOW_BITS,
        )


@attr.s(auto_attribs=True)
class Bitmap:
    """Free-space bitmap, one bit per block (1 = used)"""

    data: bytearray = attr.ib(factory=lambda: bytearray(BITMAP_SIZE), converter=bytearray)

    def is_used(self, block: int) -> bool:
        byte_idx, bit_idx = divmod(block, 8)
        return bool(self.data[byte_idx] & (1 << bit_idx))

    def is_free(self, block: int) -> bool:
        return not self.is_used(block)

    def find_contiguous(self, size: int) -> Optional[int]:
        """First-fit search for `size` free blocks, never returning block 0.

        A size of zero is what directories ask for and yields start block 0.
        """
        if size <= 0:
            return 0

        run_start = 1
        run_length = 0
        for block in range(1, NUM_BLOCKS):
            if self.is_used(block):
                run_length = 0
                continue
            if run_length == 0:
                run_start = block
            run_length += 1
            if run_length == size:
                return run_start
        return None

    def range_is_free(self, start: int, count: int) -> bool:
        if start < 1 or start + count > NUM_BLOCKS:
            return False
        return all(self.is_free(block) for block in range(start, start + count))

    def mark(self, start: int, count: int, used: bool):
        for block in range(start, start + count):
            if block < 0 or block >= NUM_BLOCKS:
                continue
            byte_idx, bit_idx = divmod(block, 8)
            if block == 0 or used:
                self.data[byte_idx] |= 1 << bit_idx
            else:
                self.data[byte_idx] &= ~(1 << bit_idx) & 0xFF

    def reset(self):
        """Mark every block free except the superblock"""
        self.data[:] = bytes(BITMAP_SIZE)
        self.mark(0, 1, True)

    def used_blocks(self) -> List[int]:
        return [block for block in range(NUM_BLOCKS) if self.is_used(block)]

    def pack(self) -> bytes:
        return bytes(self.data)

    @classmethod
    def unpack(cls, data: bytes) -> "Bitmap":
        return cls(data[:BITMAP_SIZE])


@attr.s(auto_attribs=True)
class Superblock:
    """Block 0: the bitmap followed by the inode table"""

    bitmap: Bitmap = attr.ib(factory=Bitmap)
    inodes: List[Inode] = attr.ib(factory=lambda: [Inode() for _ in range(NUM_INODES)])

    # Inode table

    def find_free_inode(self) -> Optional[int]:
        for index, inode in enumerate(self.inodes):
            if not inode.used:
                return index
        return None

    def lookup(self, name: bytes, parent: int) -> Optional[int]:
        """Index of the in-use record called `name` inside `parent`"""
        for index, inode in enumerate(self.inodes):
            if inode.used and inode.parent == parent and inode.name == name:
                return index
        return None

    def children(self, parent: int) -> Iterator[Tuple[int, Inode]]:
        for index, inode in enumerate(self.inodes):
            if inode.used and inode.parent == parent:
                yield index, inode

    def child_count(self, parent: int) -> int:
        # Every directory implicitly holds "." and ".."
        return 2 + sum(1 for _ in self.children(parent))

    def files(self) -> List[Tuple[int, Inode]]:
        return [(index, inode) for index, inode in enumerate(self.inodes) if inode.is_file]

    # Serialization

    def pack(self) -> bytes:
        data = self.bitmap.pack() + b"".join(inode.pack() for inode in self.inodes)
        return data + b"\x00" * (BLOCK_SIZE - len(data))

    @classmethod
    def unpack(cls, data: bytes) -> "Superblock":
        if len(data) < BLOCK_SIZE:
            data = data + b"\x00" * (BLOCK_SIZE - len(data))
        bitmap = Bitmap.unpack(data[:BITMAP_SIZE])
        inodes = []
        for i in range(NUM_INODES):
            offset = BITMAP_SIZE + i * INODE_SIZE
            inodes.append(Inode.unpack(data[offset : offset + INODE_SIZE]))
        return cls(bitmap, inodes)

    @classmethod
    def blank(cls) -> "Superblock":
        superblock = cls()
        superblock.bitmap.mark(0, 1, True)
        return superblock
