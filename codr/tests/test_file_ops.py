"""Tests for the file operation executor and path confinement."""

import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from codr.errors import (
    AlreadyExists,
    FileIOError,
    PathEscape,
    PathNotFound,
    UnsupportedContent,
)
from codr.tool_handlers import (
    FileOperationExecutor,
    FileOperationRequest,
    OperationKind,
    is_destructive,
    resolve_path,
    to_display_path,
)


def _req(kind, path, content=None, **kw):
    return FileOperationRequest(OperationKind(kind), path, content, **kw)


class FileOpsTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = os.path.join(self.temp_dir, "root")
        os.mkdir(self.root)
        self.executor = FileOperationExecutor(self.root)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def write(self, rel, data: bytes):
        path = os.path.join(self.root, rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def read_bytes(self, rel):
        with open(os.path.join(self.root, rel), "rb") as f:
            return f.read()


class TestCreate(FileOpsTestCase):
    def test_create_then_read_is_byte_exact(self):
        content = "line one\r\nline two\n\ttabbed ünïcode ✓\n"
        self.executor.execute(_req("create", "notes.txt", content))
        result = self.executor.execute(_req("read", "notes.txt"))
        self.assertEqual(result.content, content)
        self.assertEqual(self.read_bytes("notes.txt"), content.encode("utf-8"))

    def test_create_makes_parent_dirs(self):
        result = self.executor.execute(_req("create", "a/b/c.txt", "x"))
        self.assertTrue(os.path.isfile(os.path.join(self.root, "a", "b", "c.txt")))
        self.assertEqual(result.path, "a/b/c.txt")
        self.assertEqual(result.bytes_written, 1)
        self.assertTrue(result.output.startswith("ok:"))

    def test_create_existing_fails_without_overwrite(self):
        self.write("keep.txt", b"original")
        with self.assertRaises(AlreadyExists):
            self.executor.execute(_req("create", "keep.txt", "new"))
        self.assertEqual(self.read_bytes("keep.txt"), b"original")

    def test_create_with_overwrite_replaces(self):
        self.write("keep.txt", b"original")
        result = self.executor.execute(_req("create", "keep.txt", "new", overwrite=True))
        self.assertEqual(self.read_bytes("keep.txt"), b"new")
        self.assertIn("overwrote", result.output)

    def test_create_on_folder_fails(self):
        os.mkdir(os.path.join(self.root, "dir"))
        with self.assertRaises(AlreadyExists):
            self.executor.execute(_req("create", "dir", "x", overwrite=True))

    def test_create_empty_content(self):
        self.executor.execute(_req("create", "empty.txt", ""))
        self.assertEqual(self.read_bytes("empty.txt"), b"")


class TestRead(FileOpsTestCase):
    def test_read_missing(self):
        with self.assertRaises(PathNotFound) as ctx:
            self.executor.execute(_req("read", "nope.txt"))
        self.assertEqual(ctx.exception.kind, "NotFound")

    def test_read_invalid_utf8(self):
        self.write("latin.txt", b"caf\xe9")
        with self.assertRaises(UnsupportedContent):
            self.executor.execute(_req("read", "latin.txt"))

    def test_read_binary(self):
        self.write("img.bin", b"\x89PNG\x00\x00\x01")
        with self.assertRaises(UnsupportedContent):
            self.executor.execute(_req("read", "img.bin"))

    def test_read_folder(self):
        os.mkdir(os.path.join(self.root, "dir"))
        with self.assertRaises(UnsupportedContent):
            self.executor.execute(_req("read", "dir"))

    def test_read_too_large(self):
        executor = FileOperationExecutor(self.root, max_file_size=4)
        self.write("big.txt", b"12345")
        with self.assertRaises(UnsupportedContent):
            executor.execute(_req("read", "big.txt"))


class TestReplace(FileOpsTestCase):
    def test_replace_missing_never_creates(self):
        with self.assertRaises(PathNotFound):
            self.executor.execute(_req("replace", "ghost.txt", "x"))
        self.assertFalse(os.path.exists(os.path.join(self.root, "ghost.txt")))

    def test_replace_overwrites_and_keeps_mode(self):
        path = self.write("script.sh", b"echo old\n")
        os.chmod(path, 0o755)
        self.executor.execute(_req("replace", "script.sh", "echo new\n"))
        self.assertEqual(self.read_bytes("script.sh"), b"echo new\n")
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o755)

    def test_replace_leaves_no_temp_files(self):
        self.write("a.txt", b"old")
        self.executor.execute(_req("replace", "a.txt", "new"))
        self.assertEqual(os.listdir(self.root), ["a.txt"])

    def test_replace_failure_keeps_original(self):
        self.write("a.txt", b"old")
        with patch("codr.tool_handlers.file_ops.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(FileIOError) as ctx:
                self.executor.execute(_req("replace", "a.txt", "new"))
        self.assertEqual(self.read_bytes("a.txt"), b"old")
        self.assertEqual(os.listdir(self.root), ["a.txt"])
        self.assertEqual(ctx.exception.kind, "IOError")
        self.assertIn("disk full", ctx.exception.describe())


class TestAppend(FileOpsTestCase):
    def test_append_missing(self):
        with self.assertRaises(PathNotFound):
            self.executor.execute(_req("append", "log.txt", "x"))

    def test_append_preserves_existing_bytes(self):
        self.write("log.txt", b"first\r\n")
        self.executor.execute(_req("append", "log.txt", "second\n"))
        self.assertEqual(self.read_bytes("log.txt"), b"first\r\nsecond\n")

    def test_append_is_associative(self):
        a, b = "alpha\n", "beta ✓"
        self.write("one.txt", b"start:")
        self.write("two.txt", b"start:")
        self.executor.execute(_req("append", "one.txt", a))
        self.executor.execute(_req("append", "one.txt", b))
        self.executor.execute(_req("append", "two.txt", a + b))
        self.assertEqual(self.read_bytes("one.txt"), self.read_bytes("two.txt"))


class TestUnencodableContent(FileOpsTestCase):
    def test_create_lone_surrogate(self):
        with self.assertRaises(UnsupportedContent) as ctx:
            self.executor.execute(_req("create", "e.txt", "\ud83d"))
        self.assertIsInstance(ctx.exception.cause, UnicodeEncodeError)
        self.assertFalse(os.path.exists(os.path.join(self.root, "e.txt")))

    def test_replace_lone_surrogate_keeps_original(self):
        self.write("a.txt", b"old")
        with self.assertRaises(UnsupportedContent):
            self.executor.execute(_req("replace", "a.txt", "x\udc00"))
        self.assertEqual(self.read_bytes("a.txt"), b"old")

    def test_append_lone_surrogate(self):
        self.write("log.txt", b"start")
        with self.assertRaises(UnsupportedContent):
            self.executor.execute(_req("append", "log.txt", "\ud83d"))
        self.assertEqual(self.read_bytes("log.txt"), b"start")


class TestFolders(FileOpsTestCase):
    def test_mkdir_nested(self):
        result = self.executor.execute(_req("mkdir", "src/pkg"))
        self.assertTrue(os.path.isdir(os.path.join(self.root, "src", "pkg")))
        self.assertIn("created folder", result.output)

    def test_mkdir_over_file(self):
        self.write("taken", b"x")
        with self.assertRaises(AlreadyExists):
            self.executor.execute(_req("mkdir", "taken"))

    def test_list_recursive(self):
        self.write("README.md", b"#")
        self.write("src/main.py", b"print()")
        self.write(".git/HEAD", b"ref")
        result = self.executor.execute(_req("list", "."))
        tree = json.loads(result.output)
        self.assertEqual([f["path"] for f in tree["files"]], ["README.md"])
        self.assertEqual([d["name"] for d in tree["folders"]], ["src"])
        self.assertEqual(tree["folders"][0]["contents"]["files"][0]["path"], "src/main.py")

    def test_list_not_recursive(self):
        self.write("src/main.py", b"print()")
        result = self.executor.execute(_req("list", ".", recursive=False))
        tree = json.loads(result.output)
        self.assertNotIn("contents", tree["folders"][0])

    def test_list_missing(self):
        with self.assertRaises(PathNotFound):
            self.executor.execute(_req("list", "nowhere"))


class TestPathEscape(FileOpsTestCase):
    def test_traversal_rejected_before_io(self):
        handler_calls = []
        for kind in ("create", "read", "replace", "append", "mkdir", "list"):
            with patch.object(self.executor, "_handlers", {k: lambda *a: handler_calls.append(a) for k in OperationKind}):
                with self.assertRaises(PathEscape):
                    self.executor.execute(_req(kind, "../outside.txt", "x"))
        self.assertEqual(handler_calls, [])
        self.assertFalse(os.path.exists(os.path.join(self.temp_dir, "outside.txt")))

    def test_absolute_path_outside_rejected(self):
        with self.assertRaises(PathEscape):
            self.executor.execute(_req("read", "/etc/passwd"))

    def test_absolute_path_inside_allowed(self):
        self.write("in.txt", b"ok")
        result = self.executor.execute(_req("read", os.path.join(self.root, "in.txt")))
        self.assertEqual(result.content, "ok")

    def test_symlink_escape_rejected(self):
        outside = os.path.join(self.temp_dir, "secret.txt")
        with open(outside, "w") as f:
            f.write("secret")
        os.symlink(outside, os.path.join(self.root, "link.txt"))
        with self.assertRaises(PathEscape):
            self.executor.execute(_req("read", "link.txt"))
        with self.assertRaises(PathEscape):
            self.executor.execute(_req("append", "link.txt", "x"))
        with open(outside) as f:
            self.assertEqual(f.read(), "secret")

    def test_symlinked_dir_escape_rejected(self):
        outside_dir = os.path.join(self.temp_dir, "elsewhere")
        os.mkdir(outside_dir)
        os.symlink(outside_dir, os.path.join(self.root, "linkdir"))
        with self.assertRaises(PathEscape):
            self.executor.execute(_req("create", "linkdir/new.txt", "x"))
        self.assertEqual(os.listdir(outside_dir), [])

    def test_sibling_prefix_is_outside(self):
        sibling = self.root + "-evil"
        os.mkdir(sibling)
        with self.assertRaises(PathEscape):
            resolve_path(os.path.join(sibling, "x.txt"), self.root)

    def test_empty_path(self):
        with self.assertRaises(PathEscape):
            resolve_path("  ", self.root)


class TestHelpers(unittest.TestCase):
    def test_display_path_relative_to_root(self):
        root = tempfile.mkdtemp()
        try:
            self.assertEqual(to_display_path(os.path.join(root, "a", "b.txt"), root), "a/b.txt")
            self.assertEqual(to_display_path(".", root), ".")
            self.assertEqual(to_display_path("/elsewhere/x.txt", root), "x.txt")
        finally:
            shutil.rmtree(root)

    def test_is_destructive(self):
        self.assertTrue(is_destructive(_req("replace", "a", "x")))
        self.assertTrue(is_destructive(_req("create", "a", "x", overwrite=True)))
        self.assertFalse(is_destructive(_req("create", "a", "x")))
        self.assertFalse(is_destructive(_req("append", "a", "x")))
        self.assertFalse(is_destructive(_req("read", "a")))


if __name__ == "__main__":
    unittest.main()
