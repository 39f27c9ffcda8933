"""File store abstraction with atomic multi-file transactions.

A ``FileTransaction`` collects create / insert / replace operations for any
number of files. ``LocalFileStore.commit`` stages every resulting file next
to its target, then swaps them in with ``os.replace``. If any step fails,
files already swapped are restored from their pre-images and the store
raises ``TransactionError``, so callers observe all or nothing.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .errors import TransactionError
from .specky_logging import log_error_with_context, observability_hooks


logger = logging.getLogger("specky.filestore")

ChangeListener = Callable[[List[Path]], None]


@dataclass(slots=True)
class EditOperation:
    """One step of a transaction. Offsets are character offsets."""

    kind: str  # 'create', 'insert', 'replace'
    path: Path
    text: str = ""
    start: int = 0
    end: int = 0


@dataclass(slots=True)
class FileTransaction:
    """Ordered multi-file edit, committed as one unit."""

    operations: List[EditOperation] = field(default_factory=list)

    def create_file(self, path: Union[Path, str]) -> None:
        """Create an empty file if it does not exist yet."""
        self.operations.append(EditOperation(kind="create", path=Path(path)))

    def insert(self, path: Union[Path, str], offset: int, text: str) -> None:
        self.operations.append(EditOperation(kind="insert", path=Path(path), text=text, start=offset, end=offset))

    def replace(self, path: Union[Path, str], start: int, end: int, text: str) -> None:
        self.operations.append(EditOperation(kind="replace", path=Path(path), text=text, start=start, end=end))

    @property
    def paths(self) -> List[Path]:
        seen: List[Path] = []
        for operation in self.operations:
            if operation.path not in seen:
                seen.append(operation.path)
        return seen

    def __len__(self) -> int:
        return len(self.operations)


class LocalFileStore:
    """File store over a directory tree on local disk."""

    def __init__(self, root: Union[Path, str]):
        self.root = Path(root).resolve()
        self._listeners: List[ChangeListener] = []
        self._last_pre_images: Optional[Dict[Path, Optional[bytes]]] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, path: Union[Path, str]) -> Optional[bytes]:
        """Return the file's bytes, or ``None`` when it does not exist."""
        target = self._absolute(path)
        try:
            return target.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    def read_text(self, path: Union[Path, str]) -> Optional[str]:
        data = self.read(path)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def is_file(self, path: Union[Path, str]) -> bool:
        return self._absolute(path).is_file()

    def exists(self, path: Union[Path, str]) -> bool:
        return self._absolute(path).exists()

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, paths: List[Path]) -> None:
        for listener in list(self._listeners):
            try:
                listener(list(paths))
            except Exception as e:
                logger.error(f"Change listener failed: {e}")
        observability_hooks.log_workflow_event(
            "files_changed",
            paths=[str(path) for path in paths],
            root=str(self.root),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_text(self, path: Union[Path, str], content: str, undoable: bool = True) -> Path:
        """Replace a single file's content atomically."""
        transaction = FileTransaction()
        target = self._absolute(path)
        transaction.create_file(target)
        current = self.read_text(target) or ""
        transaction.replace(target, 0, len(current), content)
        self.commit(transaction, undoable=undoable)
        return target

    def commit(self, transaction: FileTransaction, undoable: bool = True) -> List[Path]:
        """Apply every operation or none of them.

        Returns the affected paths in first-touched order. Raises
        ``TransactionError`` after rolling back on any failure. Only
        ``undoable`` commits replace the snapshot used by ``undo_last``.
        """
        if not transaction.operations:
            return []

        pre_images: Dict[Path, Optional[bytes]] = {}
        staged: Dict[Path, Optional[str]] = {}
        for operation in transaction.operations:
            target = self._absolute(operation.path)
            if target not in staged:
                pre_images[target] = self.read(target)
                staged[target] = self._decode(pre_images[target], target)
            staged[target] = self._apply_operation(staged[target], operation, target)

        final = {path: content for path, content in staged.items() if content is not None}
        self._swap_in(final, pre_images)
        if undoable:
            self._last_pre_images = {path: pre_images[path] for path in final}

        paths = list(final)
        logger.info(f"Committed transaction touching {len(paths)} file(s)")
        self._notify(paths)
        return paths

    @staticmethod
    def _decode(data: Optional[bytes], target: Path) -> Optional[str]:
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TransactionError(f"{target} is not UTF-8 text", (target,)) from e

    def _apply_operation(self, current: Optional[str], operation: EditOperation, target: Path) -> Optional[str]:
        if operation.kind == "create":
            return "" if current is None else current
        if current is None:
            raise TransactionError(f"Cannot {operation.kind} in missing file {target}", (target,))
        if operation.kind == "insert":
            if not 0 <= operation.start <= len(current):
                raise TransactionError(f"Insert offset {operation.start} out of range for {target}", (target,))
            return current[:operation.start] + operation.text + current[operation.start:]
        if operation.kind == "replace":
            if not 0 <= operation.start <= operation.end <= len(current):
                raise TransactionError(
                    f"Replace range {operation.start}:{operation.end} out of range for {target}", (target,)
                )
            return current[:operation.start] + operation.text + current[operation.end:]
        raise TransactionError(f"Unknown operation '{operation.kind}'", (target,))

    def _swap_in(self, final: Dict[Path, str], pre_images: Dict[Path, Optional[bytes]]) -> None:
        temp_files: Dict[Path, Path] = {}
        created_dirs: List[Path] = []
        swapped: List[Path] = []
        try:
            for target, content in final.items():
                created_dirs.extend(self._ensure_parent(target))
                temp_files[target] = self._stage(target, content.encode("utf-8"))
            for target, temp in temp_files.items():
                os.replace(temp, target)
                swapped.append(target)
        except Exception as e:
            self._rollback(swapped, pre_images)
            for temp in temp_files.values():
                if temp.exists():
                    temp.unlink()
            for directory in reversed(created_dirs):
                try:
                    directory.rmdir()
                except OSError:
                    pass
            log_error_with_context(e, {
                "operation": "commit_transaction",
                "paths": [str(path) for path in final],
            })
            raise TransactionError(f"Transaction failed: {e}", tuple(final)) from e

    def _ensure_parent(self, target: Path) -> List[Path]:
        created: List[Path] = []
        parent = target.parent
        missing: List[Path] = []
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            directory.mkdir()
            created.append(directory)
        return created

    def _stage(self, target: Path, data: bytes) -> Path:
        handle, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".specky-tmp", dir=target.parent)
        with os.fdopen(handle, "wb") as stream:
            stream.write(data)
            stream.flush()
            os.fsync(stream.fileno())
        if target.exists():
            os.chmod(name, target.stat().st_mode & 0o7777)
        return Path(name)

    def _rollback(self, swapped: List[Path], pre_images: Dict[Path, Optional[bytes]]) -> None:
        for target in reversed(swapped):
            original = pre_images.get(target)
            try:
                if original is None:
                    target.unlink(missing_ok=True)
                else:
                    target.write_bytes(original)
            except OSError as e:
                logger.error(f"Rollback of {target} failed: {e}")

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return self._last_pre_images is not None

    def undo_last(self) -> List[Path]:
        """Restore the files touched by the last committed transaction."""
        if self._last_pre_images is None:
            return []

        pre_images = self._last_pre_images
        restore = {path: data.decode("utf-8") for path, data in pre_images.items() if data is not None}
        current = {path: self.read(path) for path in pre_images}
        self._swap_in(restore, current)

        for path, data in pre_images.items():
            if data is None and path.exists():
                path.unlink()

        self._last_pre_images = None
        paths = list(pre_images)
        logger.info(f"Reverted last transaction ({len(paths)} file(s))")
        self._notify(paths)
        return paths

    def _absolute(self, path: Union[Path, str]) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate
