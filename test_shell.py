#!/usr/bin/env python3
"""
Tests for the interactive shell commands
"""

import io
import os
import shutil
import tempfile

from rich.console import Console

import shell
import vfs
from testing import TestCase, TestRunner

console = Console()


class ShellTestCase(TestCase):

    def setUp(self):
        self.fs = vfs.init_filesystem(100, 32)
        self.saved_console = shell.console
        self.out = io.StringIO()
        shell.console = Console(file=self.out, width=200, color_system=None, highlight=False)

    def tearDown(self):
        shell.console = self.saved_console

    def execute(self, *lines):
        for line in lines:
            shell.run_command(line)
        text = self.out.getvalue()
        self.out.seek(0)
        self.out.truncate()
        return text


class TestCommands(ShellTestCase):

    def test_mkdir_touch_ls(self):
        output = self.execute("mkdir docs", "touch a.txt b.txt", "ls")
        self.assertEqual(output.split(), ["a.txt", "b.txt", "docs"])

    def test_write_and_cat(self):
        self.execute('write note.txt "hello world"')
        self.assertEqual(self.fs.get_file("note.txt").content, "hello world")
        self.assertEqual(self.execute("cat note.txt").strip(), "hello world")
        self.execute("write note.txt replaced")
        self.assertEqual(self.fs.get_file("note.txt").content, "replaced")

    def test_append(self):
        self.execute("write log first", "append log second")
        self.assertEqual(self.fs.get_file("log").content, "first\nsecond")
        self.assertIn("append:", self.execute("append missing x"))

    def test_cd_and_pwd(self):
        self.execute("mkdir a", "cd a", "mkdir b", "cd b")
        self.assertEqual(self.execute("pwd").strip(), "/a/b")
        self.execute("cd ..")
        self.assertEqual(self.fs.current_path, "/a")
        self.execute("cd /")
        self.assertEqual(self.fs.current_path, "/")
        self.execute("cd a/b")
        self.assertEqual(self.fs.current_path, "/a/b")
        self.execute("cd /a")
        self.assertEqual(self.fs.current_path, "/a")

    def test_failed_cd_restores_cursor(self):
        self.execute("mkdir a", "cd a", "mkdir b")
        output = self.execute("cd b/missing")
        self.assertIn("cd: No such file or directory: missing", output)
        self.assertEqual(self.fs.current_path, "/a")

    def test_errors_are_reported(self):
        self.execute("touch dup")
        self.assertIn("touch: File exists: dup", self.execute("touch dup"))
        self.assertIn("rm: No such file or directory: ghost", self.execute("rm ghost"))
        self.assertIn("cat: Is a directory", self.execute("mkdir d", "cat d"))
        self.assertIn("Unknown command: frobnicate", self.execute("frobnicate"))

    def test_rm_directory(self):
        self.execute("mkdir d", "cd d", "rndfile big 100", "cd ..")
        self.assertEqual(self.fs.used_block_count(), 4)
        self.execute("rm d")
        self.assertEqual(self.fs.used_block_count(), 0)

    def test_ll_table(self):
        self.execute("write f.txt abc", "mkdir sub")
        output = self.execute("ll")
        for column in ["Name", "Kind", "Size (bytes)", "Modified", "Blocks"]:
            self.assertIn(column, output)
        self.assertIn("f.txt", output)
        self.assertIn("1 @ 0", output)
        self.assertIn("Directory", output)

    def test_tree(self):
        self.execute("mkdir src", "cd src", "write main.c code", "cd /")
        output = self.execute("tree")
        self.assertIn("src", output)
        self.assertIn("main.c (4 B, 1 blk)", output)

    def test_stat(self):
        self.execute("write f xyz")
        output = self.execute("stat f")
        self.assertIn("Size: 3", output)
        self.assertIn("Type: File", output)
        self.assertIn("stat: No such file", self.execute("stat nope"))

    def test_df_and_blocks(self):
        self.execute("rndfile r 64")
        output = self.execute("df")
        self.assertIn("Used: 2/100 blocks", output)
        self.assertIn("2.0%", output)
        output = self.execute("blocks")
        self.assertIn("r: blocks 0-1 (2)", output)
        self.assertIn("Free runs: 1", output)

    def test_fsck(self):
        self.execute("write a 1")
        self.assertIn("clean", self.execute("fsck"))
        self.fs.allocator.mark(50, 1, "ghost")
        self.assertIn("block 50 is used but belongs to no file", self.execute("fsck"))

    def test_rndfile_size(self):
        self.execute("rndfile r 70")
        node = self.fs.get_file("r")
        self.assertEqual(node.size, 70)
        self.assertEqual(node.allocated_blocks, 3)
        self.assertIn("invalid size", self.execute("rndfile q big"))

    def test_exit(self):
        self.assertFalse(shell.run_command("exit"))
        self.assertFalse(shell.run_command("quit"))
        self.assertTrue(shell.run_command(""))

    def test_help_lists_commands(self):
        output = self.execute("help")
        for name in ["cd", "ll", "tree", "df", "export", "import"]:
            self.assertIn(f"  {name}:", output)


class TestPersistenceCommands(ShellTestCase):

    def setUp(self):
        super().setUp()
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "s.img")

    def tearDown(self):
        super().tearDown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_export_then_import(self):
        self.execute("mkdir keep", "write f data")
        self.assertIn("Exported to", self.execute(f"export {self.path}"))
        self.execute("rm keep", "rm f", "mkdir other", "cd other")
        self.assertIn("Imported 3 nodes", self.execute(f"import {self.path}"))
        self.assertEqual(sorted(self.fs.root.children), ["f", "keep"])
        self.assertEqual(self.fs.current_path, "/")

    def test_import_missing(self):
        output = self.execute(f"import {os.path.join(self.tmpdir, 'none.img')}")
        self.assertIn("import: Cannot read", output)


if __name__ == "__main__":
    console.print("[bold white on blue]Shell Test Suite[/bold white on blue]\n")

    runner = TestRunner()
    runner.run(TestCommands)
    runner.run(TestPersistenceCommands)

    runner.summary()
