"""
File operation executor: create, read, replace, append, mkdir, list.

All paths are confined to the project root. Writes are UTF-8 bytes with no
newline translation; replace and overwriting create go through a temp file
in the same directory followed by os.replace().
"""

import json
import os
import stat
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from codr.errors import (
    AlreadyExists,
    FileIOError,
    FileOperationError,
    PathNotFound,
    UnsupportedContent,
)
from codr.tool_handlers._path import DEFAULT_IGNORE_DIRS, resolve_path, to_display_path
from codr.tool_handlers.registry import OperationKind

MAX_FILE_SIZE = 1024 * 1024  # 1MB


@dataclass(frozen=True)
class FileOperationRequest:
    kind: OperationKind
    path: str
    content: Optional[str] = None
    overwrite: bool = False
    recursive: bool = True


@dataclass(frozen=True)
class FileOperationResult:
    kind: OperationKind
    path: str
    output: str
    content: Optional[str] = None
    bytes_written: int = 0


def is_destructive(request: FileOperationRequest) -> bool:
    """Operations that can discard existing file content."""
    if request.kind == OperationKind.REPLACE:
        return True
    return request.kind == OperationKind.CREATE and request.overwrite


def _atomic_write(target: str, data: bytes, mode: Optional[int] = None) -> None:
    directory = os.path.dirname(target) or "."
    fd, tmp_path = tempfile.mkstemp(prefix=".codr-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class FileOperationExecutor:
    """Performs one FileOperationRequest at a time against a project root.

    The executor holds no per-file state, so one instance can serve calls on
    disjoint paths from several threads.
    """

    def __init__(self, project_root: str, max_file_size: int = MAX_FILE_SIZE):
        self.project_root = os.path.realpath(project_root)
        self.max_file_size = max_file_size
        self._handlers: Dict[OperationKind, Callable[[str, FileOperationRequest], FileOperationResult]] = {
            OperationKind.CREATE: self._create,
            OperationKind.READ: self._read,
            OperationKind.REPLACE: self._replace,
            OperationKind.APPEND: self._append,
            OperationKind.MKDIR: self._mkdir,
            OperationKind.LIST: self._list,
        }

    def resolve(self, path: str) -> str:
        return resolve_path(path, self.project_root)

    def display(self, path: str) -> str:
        return to_display_path(path, self.project_root)

    def lane_key(self, request: FileOperationRequest) -> str:
        """Key used to serialize calls touching the same path."""
        return self.resolve(request.path)

    def execute(self, request: FileOperationRequest) -> FileOperationResult:
        target = self.resolve(request.path)
        handler = self._handlers.get(request.kind)
        if handler is None:
            raise UnsupportedContent(f"unsupported operation '{request.kind}'", path=request.path)
        try:
            return handler(target, request)
        except FileOperationError:
            raise
        except UnicodeError as exc:
            raise UnsupportedContent(
                f"content for {self.display(target)} cannot be encoded as UTF-8",
                path=request.path,
                cause=exc,
            ) from exc
        except OSError as exc:
            raise FileIOError(
                f"{request.kind.value} failed for {self.display(target)}",
                path=request.path,
                cause=exc,
            ) from exc

    # ---------------------------
    # Operations
    # ---------------------------

    def _create(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self.display(target)
        if os.path.isdir(target):
            raise AlreadyExists(f"{shown} is a folder", path=request.path)
        if os.path.exists(target) and not request.overwrite:
            raise AlreadyExists(
                f"{shown} already exists. Use replace_file_content or set overwrite to true",
                path=request.path,
            )
        data = (request.content or "").encode("utf-8")
        parent = os.path.dirname(target)
        if parent:
            os.makedirs(parent, exist_ok=True)

        if request.overwrite and os.path.exists(target):
            _atomic_write(target, data, stat.S_IMODE(os.stat(target).st_mode))
            verb = "overwrote"
        else:
            try:
                with open(target, "xb") as f:
                    f.write(data)
            except FileExistsError as exc:
                raise AlreadyExists(f"{shown} already exists", path=request.path, cause=exc) from exc
            verb = "created"
        return FileOperationResult(
            kind=request.kind,
            path=shown,
            output=f"ok: {verb} {shown} ({len(data)} bytes)",
            bytes_written=len(data),
        )

    def _require_file(self, target: str, request: FileOperationRequest) -> str:
        shown = self.display(target)
        if not os.path.exists(target):
            raise PathNotFound(f"file not found: {shown}", path=request.path)
        if os.path.isdir(target):
            raise UnsupportedContent(f"{shown} is a folder, not a file", path=request.path)
        return shown

    def _read(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self._require_file(target, request)
        size = os.path.getsize(target)
        if size > self.max_file_size:
            raise UnsupportedContent(
                f"{shown} is too large ({size} bytes, limit {self.max_file_size})",
                path=request.path,
            )
        with open(target, "rb") as f:
            raw = f.read()
        if b"\x00" in raw:
            raise UnsupportedContent(f"{shown} looks like a binary file", path=request.path)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UnsupportedContent(f"{shown} is not valid UTF-8 text", path=request.path, cause=exc) from exc
        return FileOperationResult(kind=request.kind, path=shown, output=text, content=text)

    def _replace(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self._require_file(target, request)
        data = (request.content or "").encode("utf-8")
        _atomic_write(target, data, stat.S_IMODE(os.stat(target).st_mode))
        return FileOperationResult(
            kind=request.kind,
            path=shown,
            output=f"ok: replaced content of {shown} ({len(data)} bytes)",
            bytes_written=len(data),
        )

    def _append(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self._require_file(target, request)
        data = (request.content or "").encode("utf-8")
        with open(target, "ab") as f:
            f.write(data)
        return FileOperationResult(
            kind=request.kind,
            path=shown,
            output=f"ok: appended {len(data)} bytes to {shown}",
            bytes_written=len(data),
        )

    def _mkdir(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self.display(target)
        if os.path.exists(target) and not os.path.isdir(target):
            raise AlreadyExists(f"{shown} exists and is not a folder", path=request.path)
        existed = os.path.isdir(target)
        os.makedirs(target, exist_ok=True)
        output = f"ok: folder {shown} already exists" if existed else f"ok: created folder {shown}"
        return FileOperationResult(kind=request.kind, path=shown, output=output)

    def _list(self, target: str, request: FileOperationRequest) -> FileOperationResult:
        shown = self.display(target)
        if not os.path.exists(target):
            raise PathNotFound(f"folder not found: {shown}", path=request.path)
        if not os.path.isdir(target):
            raise UnsupportedContent(f"{shown} is a file, not a folder", path=request.path)
        tree = self._scan(target, request.recursive)
        return FileOperationResult(
            kind=request.kind,
            path=shown,
            output=json.dumps(tree, ensure_ascii=False),
        )

    def _scan(self, folder: str, recursive: bool) -> Dict[str, Any]:
        files: List[Dict[str, Any]] = []
        folders: List[Dict[str, Any]] = []
        with os.scandir(folder) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                if entry.name in DEFAULT_IGNORE_DIRS:
                    continue
                item: Dict[str, Any] = {"name": entry.name, "path": self.display(entry.path)}
                if recursive:
                    item["contents"] = self._scan(entry.path, recursive)
                folders.append(item)
            elif entry.is_file(follow_symlinks=False):
                files.append({"name": entry.name, "path": self.display(entry.path)})
        return {"files": files, "folders": folders}
