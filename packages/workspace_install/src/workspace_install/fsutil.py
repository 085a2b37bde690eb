from __future__ import annotations

import os
import shutil
import time
import uuid
from collections.abc import Iterable
from pathlib import Path

from workspace_install.console import eprint


def write_text_if_changed(path: Path, text: str) -> bool:
    """
    Write ``text`` to ``path`` unless the file already holds exactly that content.

    Returns True when the file was written. Unchanged files keep their timestamps, which the
    install skip check relies on.
    """

    try:
        if path.read_text(encoding="utf-8") == text:
            return False
    except FileNotFoundError:
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except Exception:
        try:
            if tmp.exists():
                tmp.unlink()
        except OSError:
            pass
        raise
    return True


def copy_file_if_changed(source: Path, destination: Path) -> bool:
    data = source.read_bytes()
    try:
        if destination.read_bytes() == data:
            return False
    except FileNotFoundError:
        pass
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    return True


def is_file_timestamp_current(reference_mtime: float, paths: Iterable[Path]) -> bool:
    """False when any path is missing or was modified after ``reference_mtime``."""

    for path in paths:
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return False
        if mtime > reference_mtime:
            return False
    return True


def create_folder_with_retry(path: Path, *, attempts: int = 5, delay_seconds: float = 0.1) -> None:
    # Recently renamed folders can be briefly locked on Windows.
    for attempt in range(1, attempts + 1):
        try:
            path.mkdir(parents=True, exist_ok=True)
            return
        except PermissionError:
            if attempt == attempts:
                raise
            time.sleep(delay_seconds)


class Recycler:
    """
    Moves folders out of the way instead of deleting them in place.

    A rename is atomic on the same volume, so a crash never leaves a half-deleted folder at
    the original location. Moved folders are removed later by ``purge``.
    """

    def __init__(self, recycler_folder: Path) -> None:
        self.recycler_folder = recycler_folder
        self._moved: list[Path] = []

    @property
    def moved(self) -> tuple[Path, ...]:
        return tuple(self._moved)

    def move_folder(self, folder: Path) -> Path | None:
        if not folder.exists():
            return None
        self.recycler_folder.mkdir(parents=True, exist_ok=True)
        target = self.recycler_folder / f"{folder.name}-{uuid.uuid4().hex[:12]}"
        try:
            folder.rename(target)
        except OSError:
            # Different volume (e.g. a store outside the temp folder).
            shutil.move(str(folder), str(target))
        self._moved.append(target)
        return target

    def purge(self) -> None:
        if not self.recycler_folder.exists():
            return
        for child in sorted(self.recycler_folder.iterdir()):
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child, ignore_errors=True)
            else:
                try:
                    child.unlink()
                except OSError as e:
                    eprint(f"WARNING: Failed to remove {child}: {e}")
        self._moved.clear()
