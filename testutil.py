"""
Small test harness shared by the test modules.

Test classes derive from TestCase; they run under pytest (through
setup_method/teardown_method) or directly through TestRunner.
"""

import os
import shutil
import tempfile
import traceback

from rich.console import Console

from fsapi import FileSystem
from fsstruct import BLOCK_SIZE, Superblock, encode_name
from mkfs import mkfs


class RaisesContext:
    def __init__(self, exc_type):
        self.exc_type = exc_type
        self.exception = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        if exc_type is None:
            raise AssertionError(f"Expected exception {self.exc_type.__name__}, but no exception was raised")

        if not issubclass(exc_type, self.exc_type):
            raise AssertionError(
                f"Expected exception {self.exc_type.__name__}, but got {exc_type.__name__}"
            )

        self.exception = exc_value
        return True


class TestCase:
    """Base class giving every test a fresh image and a mounted session"""

    def setUp(self):
        self.workdir = tempfile.mkdtemp(prefix="fs-sim-")
        self.image_path = self.make_image("disk0")
        self.fs = FileSystem()
        self.fs.mount(self.image_path)

    def tearDown(self):
        self.fs.close()
        shutil.rmtree(self.workdir, ignore_errors=True)

    def setup_method(self, method=None):
        self.setUp()

    def teardown_method(self, method=None):
        self.tearDown()

    # Fixtures

    def make_image(self, name, superblock=None):
        path = os.path.join(self.workdir, name)
        mkfs(path)
        if superblock is not None:
            write_superblock(path, superblock)
        return path

    def read_raw_block(self, index, path=None):
        with open(path or self.image_path, "rb") as f:
            f.seek(index * BLOCK_SIZE)
            return f.read(BLOCK_SIZE)

    def disk_superblock(self, path=None):
        return Superblock.unpack(self.read_raw_block(0, path))

    def inode_of(self, name):
        index = self.fs.superblock.lookup(encode_name(name), self.fs.current_dir)
        return None if index is None else self.fs.superblock.inodes[index]

    # Assertions

    def assertEqual(self, a, b, msg=""):
        if a != b:
            raise AssertionError(f"{msg} | {a!r} != {b!r}")

    def assertTrue(self, x, msg=""):
        if not x:
            raise AssertionError(f"{msg} | Expression is not True")

    def assertFalse(self, x, msg=""):
        if x:
            raise AssertionError(f"{msg} | Expression is not False")

    def assertRaises(self, exc_type, func=None, *args, **kwargs):
        if func is None:
            return RaisesContext(exc_type)
        try:
            func(*args, **kwargs)
        except exc_type:
            return
        except Exception as e:
            raise AssertionError(
                f"Expected exception {exc_type.__name__}, but got {e.__class__.__name__}"
            )
        raise AssertionError(
            f"Expected exception {exc_type.__name__}, but no exception was raised"
        )


def write_superblock(path, superblock):
    with open(path, "r+b") as f:
        f.seek(0)
        f.write(superblock.pack())


def block_of(text):
    return text.encode("latin-1").ljust(BLOCK_SIZE, b"\x00")


class TestRunner:
    """Finds and runs every test_ method of the given classes"""

    __test__ = False

    def __init__(self):
        self.console = Console()
        self.tests_run = 0
        self.failures = []

    def run(self, test_case_class):
        self.console.print(f"[bold yellow]Running tests for {test_case_class.__name__}[/bold yellow]")
        test_instance = test_case_class()

        test_methods = [m for m in dir(test_instance) if m.startswith("test_")]

        for method_name in test_methods:
            self.tests_run += 1
            try:
                test_instance.setUp()
                getattr(test_instance, method_name)()
                self.console.print(f"  [green]✓[/green] {method_name}")
            except Exception:
                self.failures.append((method_name, traceback.format_exc()))
                self.console.print(f"  [bold red]✗ FAILED[/bold red]: {method_name}")
            finally:
                test_instance.tearDown()

        self.console.print("-" * 40)

    def summary(self):
        self.console.print("\n[bold]Test Summary[/bold]")
        if self.failures:
            self.console.print(f"[bold red]FAILURES ({len(self.failures)}):[/bold red]")
            for name, tb in self.failures:
                self.console.print(f"\n--- Failure in {name} ---")
                self.console.print(tb, style="red", markup=False)

        passed = self.tests_run - len(self.failures)
        color = "green" if passed == self.tests_run else "yellow"
        self.console.print(f"[{color}]Ran {self.tests_run} tests. {passed} passed, {len(self.failures)} failed.[/{color}]")
        return not self.failures
