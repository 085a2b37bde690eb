from __future__ import annotations

import os
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from workspace_install.config import Project, WorkspaceConfiguration
from workspace_install.errors import ConfigurationError
from workspace_install.fsutil import write_text_if_changed
from workspace_install.manifest import render_json

_ROOT_IMPORTER = "."
_LINK_PREFIX = "link:"


class LockfileError(ConfigurationError):
    default_code = "invalid_lockfile"


@dataclass(frozen=True)
class _Importer:
    specifiers: dict[str, str]
    resolved: dict[str, str]


@dataclass(frozen=True)
class ProjectLockSubset:
    """Resolved packages reachable from one project, keyed by lockfile package key."""

    project: Project
    packages: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        return render_json({key: self.packages[key] for key in sorted(self.packages)})

    def update(self) -> bool:
        return write_text_if_changed(self.project.lock_subset_path, self.render())


def delete_project_lock_subset(project: Project) -> bool:
    try:
        project.lock_subset_path.unlink()
    except FileNotFoundError:
        return False
    return True


def _str_map(value: Any, *, where: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise LockfileError(f"Expected mapping for {where}.")
    return {str(k): str(v) for k, v in value.items()}


def _parse_importer(raw: Any, *, key: str, path: Path) -> _Importer:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise LockfileError(f"Invalid importer {key!r} in {path} (expected mapping).")

    specifiers = _str_map(raw.get("specifiers"), where=f"importers.{key}.specifiers in {path}")
    resolved: dict[str, str] = {}
    for section in ("dependencies", "devDependencies", "optionalDependencies"):
        entries = raw.get(section)
        if entries is None:
            continue
        if not isinstance(entries, dict):
            raise LockfileError(f"Expected mapping for importers.{key}.{section} in {path}.")
        for name, value in entries.items():
            if isinstance(value, dict):
                # Lockfile 6+: {specifier, version}
                specifier = value.get("specifier")
                version = value.get("version")
                if specifier is not None:
                    specifiers[str(name)] = str(specifier)
                if version is not None:
                    resolved[str(name)] = str(version)
            else:
                resolved[str(name)] = str(value)
    return _Importer(specifiers=specifiers, resolved=resolved)


class PnpmLockfile:
    """Read-only accessors over a ``pnpm-lock.yaml`` document."""

    def __init__(self, path: Path, data: dict[str, Any]) -> None:
        self.path = path
        self._data = data
        self._importers: dict[str, _Importer] | None = None

    @classmethod
    def load(cls, path: Path) -> PnpmLockfile | None:
        if not path.exists():
            return None
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise LockfileError(f"Failed to parse YAML in {path}: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise LockfileError(f"Expected a YAML mapping in {path}, got {type(raw).__name__}.")
        return cls(path, raw)

    @property
    def lockfile_version(self) -> str:
        return str(self._data.get("lockfileVersion", ""))

    @property
    def is_workspace_compatible(self) -> bool:
        return isinstance(self._data.get("importers"), dict)

    @property
    def importers(self) -> dict[str, _Importer]:
        if self._importers is None:
            raw = self._data.get("importers")
            if not isinstance(raw, dict):
                raw = {}
            self._importers = {
                str(key): _parse_importer(value, key=str(key), path=self.path)
                for key, value in raw.items()
            }
        return self._importers

    def importer_key_for(self, project: Project, config: WorkspaceConfiguration) -> str:
        return Path(os.path.relpath(project.folder, config.temp_folder)).as_posix()

    def find_orphaned_projects(self, config: WorkspaceConfiguration) -> list[str]:
        orphaned: list[str] = []
        for key in self.importers:
            if key == _ROOT_IMPORTER:
                continue
            if config.try_get_project_for_path(config.temp_folder / key) is None:
                orphaned.append(key)
        return orphaned

    def is_workspace_project_modified(self, project: Project, config: WorkspaceConfiguration) -> bool:
        importer = self.importers.get(self.importer_key_for(project, config))
        if importer is None:
            return True
        return importer.specifiers != project.manifest.installable_specifiers()

    def _packages(self) -> dict[str, Any]:
        packages = self._data.get("packages")
        return packages if isinstance(packages, dict) else {}

    def _snapshots(self) -> dict[str, Any]:
        snapshots = self._data.get("snapshots")
        return snapshots if isinstance(snapshots, dict) else {}

    def _package_key(self, name: str, version: str) -> str | None:
        if version.startswith(_LINK_PREFIX):
            return None
        packages = self._packages()
        snapshots = self._snapshots()
        candidates = [version] if version.startswith("/") else []
        candidates += [f"/{name}/{version}", f"/{name}@{version}", f"{name}@{version}"]
        for candidate in candidates:
            if candidate in packages or candidate in snapshots:
                return candidate
        return None

    def _child_dependencies(self, key: str) -> dict[str, str]:
        out: dict[str, str] = {}
        for source in (self._packages().get(key), self._snapshots().get(key)):
            if not isinstance(source, dict):
                continue
            for section in ("dependencies", "optionalDependencies"):
                out.update(_str_map(source.get(section), where=f"{key}.{section} in {self.path}"))
        return out

    def _integrity(self, key: str) -> str:
        entry = self._packages().get(key)
        if entry is None and "(" in key:
            # Lockfile 9 keeps resolution data under the peer-free key.
            entry = self._packages().get(key.split("(", 1)[0])
        if not isinstance(entry, dict):
            return ""
        resolution = entry.get("resolution")
        if isinstance(resolution, dict):
            integrity = resolution.get("integrity") or resolution.get("tarball")
            if isinstance(integrity, str):
                return integrity
        return ""

    def get_project_lock_subset(
        self, project: Project, config: WorkspaceConfiguration
    ) -> ProjectLockSubset | None:
        """
        Collect every package transitively reachable from ``project``.

        Returns None when the lockfile has no importer for the project (for example after a
        filtered install that did not include it).
        """

        importer = self.importers.get(self.importer_key_for(project, config))
        if importer is None:
            return None

        reachable: dict[str, str] = {}
        queue: deque[tuple[str, str]] = deque(importer.resolved.items())
        while queue:
            name, version = queue.popleft()
            key = self._package_key(name, version)
            if key is None or key in reachable:
                continue
            reachable[key] = self._integrity(key)
            queue.extend(self._child_dependencies(key).items())
        return ProjectLockSubset(project=project, packages=reachable)
