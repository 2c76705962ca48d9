import os
import sys

from rich import print
from rich.console import Console

from fsstruct import BLOCK_SIZE, NUM_BLOCKS, Superblock


def create_empty_image(image_path: str):
    """Create a zero-filled image of NUM_BLOCKS blocks"""
    with open(image_path, "wb") as f:
        f.write(b"\x00" * (NUM_BLOCKS * BLOCK_SIZE))


def mkfs(image_path: str, force: bool = False):
    """Write an empty, mountable file system to `image_path`"""
    if os.path.exists(image_path) and not force:
        raise FileExistsError(f"{image_path} already exists")

    create_empty_image(image_path)
    with open(image_path, "r+b") as f:
        f.seek(0)
        f.write(Superblock.blank().pack())


def main():
    err = Console(stderr=True, highlight=False)
    args = sys.argv[1:]
    force = "--force" in args
    paths = [arg for arg in args if arg != "--force"]
    if len(paths) != 1:
        err.print(f"Usage: {sys.argv[0]} <image> \\[--force]")
        return 1

    try:
        mkfs(paths[0], force=force)
    except FileExistsError as e:
        err.print(f"Error: {e}", markup=False)
        return 1
    print(f"Created empty file system in {paths[0]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
