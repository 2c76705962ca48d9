"""
Command-script interpreter for the simulated file system.

Each line of the script is one command: a single letter followed by its
arguments.  Errors raised by the file system are reported and the script
carries on with the next line.
"""

import logging
import os
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from fsapi import FSError, FileSystem
from fsstruct import BLOCK_SIZE, MAX_FILE_BLOCKS, NAME_LENGTH, NUM_BLOCKS

LOG_LEVEL_ENV = "FS_SIM_LOG_LEVEL"

commands = {}


class CommandError(Exception):
    """A script line that does not have the shape its command expects"""


def command(letter, description):
    def decorator(func):
        commands[letter] = {'name': letter, 'func': func, 'description': description}
        return func
    return decorator


def parse_name(token: str) -> str:
    if not 1 <= len(token) <= NAME_LENGTH:
        raise CommandError(f"bad name {token!r}")
    return token


def parse_int(token: str, low: int, high: int) -> int:
    try:
        value = int(token)
    except ValueError:
        raise CommandError(f"not a number: {token!r}")
    if not low <= value <= high:
        raise CommandError(f"{value} not in range {low}..{high}")
    return value


def expect_args(args: List[str], count: int):
    if len(args) != count:
        raise CommandError(f"expected {count} arguments, got {len(args)}")


@command('M', 'Mount a disk image')
def handle_mount(fs, args, out):
    expect_args(args, 1)
    fs.mount(args[0])


@command('C', 'Create a file of N blocks, or a directory when N is 0')
def handle_create(fs, args, out):
    expect_args(args, 2)
    fs.create(parse_name(args[0]), parse_int(args[1], 0, MAX_FILE_BLOCKS))


@command('D', 'Delete a file or directory')
def handle_delete(fs, args, out):
    expect_args(args, 1)
    fs.delete(parse_name(args[0]))


@command('R', 'Read a block of a file into the buffer')
def handle_read(fs, args, out):
    expect_args(args, 2)
    fs.read(parse_name(args[0]), parse_int(args[1], 0, NUM_BLOCKS - 2))


@command('W', 'Write the buffer into a block of a file')
def handle_write(fs, args, out):
    expect_args(args, 2)
    fs.write(parse_name(args[0]), parse_int(args[1], 0, NUM_BLOCKS - 2))


@command('L', 'List the current directory')
def handle_list(fs, args, out):
    expect_args(args, 0)
    for entry in fs.list():
        if entry.is_directory:
            out.print(f"{entry.name:<5} {entry.size:3d}")
        else:
            out.print(f"{entry.name:<5} {entry.size:3d} KB")


@command('E', 'Resize a file')
def handle_resize(fs, args, out):
    expect_args(args, 2)
    fs.resize(parse_name(args[0]), parse_int(args[1], 1, MAX_FILE_BLOCKS))


@command('O', 'Defragment the disk')
def handle_defragment(fs, args, out):
    expect_args(args, 0)
    fs.defragment()


@command('Y', 'Change the current directory')
def handle_cd(fs, args, out):
    expect_args(args, 1)
    fs.change_directory(parse_name(args[0]))


def run_line(fs: FileSystem, line: str, out: Console):
    letter, separator, rest = line.partition(" ")

    # The buffer command takes the rest of the line verbatim, spaces included
    if letter == "B":
        if len(rest) > BLOCK_SIZE:
            raise CommandError("buffer content too long")
        fs.set_buffer(rest)
        return

    cmd_entry = commands.get(letter)
    if cmd_entry is None:
        raise CommandError(f"unknown command {letter!r}")
    args = rest.split()
    if separator and not args:
        raise CommandError(f"dangling separator after {letter!r}")
    cmd_entry['func'](fs, args, out)


def run_script(script_path: str, fs: Optional[FileSystem] = None, out: Optional[Console] = None,
               err: Optional[Console] = None) -> FileSystem:
    if fs is None:
        fs = FileSystem()
    if out is None:
        out = Console(highlight=False, markup=False, emoji=False, soft_wrap=True)
    if err is None:
        err = Console(stderr=True, highlight=False, markup=False, emoji=False, soft_wrap=True)

    # Lines are raw bytes; latin-1 maps each byte to one character and back
    with open(script_path, "rb") as f:
        for line_num, raw_line in enumerate(f, start=1):
            line = raw_line.rstrip(b"\r\n").decode("latin-1")
            if not line:
                continue
            try:
                run_line(fs, line, out)
            except (CommandError, ValueError):
                err.print(f"Command Error: {script_path}, {line_num}")
            except FSError as e:
                err.print(f"Error: {e}")
    return fs


def setup_logging(console: Console):
    level = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def main():
    err = Console(stderr=True, highlight=False, markup=False, emoji=False, soft_wrap=True)
    if len(sys.argv) != 2:
        err.print(f"Usage: {sys.argv[0]} <command_file>")
        return 1

    script_path = sys.argv[1]
    if not os.path.isfile(script_path):
        err.print(f"Error: Cannot open command file {script_path}")
        return 1

    setup_logging(err)
    fs = run_script(script_path, err=err)
    fs.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
