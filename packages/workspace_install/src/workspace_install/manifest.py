from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from workspace_install.errors import ConfigurationError


class DependencyType(str, Enum):
    REGULAR = "dependencies"
    DEV = "devDependencies"
    OPTIONAL = "optionalDependencies"
    PEER = "peerDependencies"


@dataclass(frozen=True)
class PackageJsonDependency:
    name: str
    version: str
    dependency_type: DependencyType


def _load_json_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse JSON in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Expected a JSON object in {path}, got {type(raw).__name__}.")
    return raw


def render_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


class PackageJsonEditor:
    """
    Mutable view over one project's ``package.json``.

    Key order of the original file is preserved. ``save_if_modified`` writes the file only
    after ``add_or_update_dependency`` changed something.
    """

    def __init__(self, path: Path, data: dict[str, Any]) -> None:
        self.path = path
        self._data = data
        self._modified = False

    @classmethod
    def load(cls, path: Path) -> PackageJsonEditor:
        return cls(path, _load_json_mapping(path))

    @property
    def name(self) -> str:
        name = self._data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f'Missing/invalid "name" in {self.path}')
        return name

    @property
    def version(self) -> str:
        version = self._data.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ConfigurationError(f'Missing/invalid "version" in {self.path}')
        return version

    @property
    def is_modified(self) -> bool:
        return self._modified

    def _section(self, dependency_type: DependencyType) -> dict[str, str]:
        section = self._data.get(dependency_type.value)
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigurationError(
                f'Invalid "{dependency_type.value}" in {self.path} (expected object).'
            )
        out: dict[str, str] = {}
        for dep_name, dep_version in section.items():
            if not isinstance(dep_version, str):
                raise ConfigurationError(
                    f'Invalid version for "{dep_name}" in "{dependency_type.value}" of {self.path}.'
                )
            out[dep_name] = dep_version
        return out

    @property
    def dependency_list(self) -> list[PackageJsonDependency]:
        """Regular, optional and peer dependencies. Peers already declared as dev are omitted."""

        dev_names = set(self._section(DependencyType.DEV))
        out: list[PackageJsonDependency] = []
        for dependency_type in (DependencyType.REGULAR, DependencyType.OPTIONAL):
            for name, version in self._section(dependency_type).items():
                out.append(PackageJsonDependency(name, version, dependency_type))
        for name, version in self._section(DependencyType.PEER).items():
            if name in dev_names:
                continue
            out.append(PackageJsonDependency(name, version, DependencyType.PEER))
        return out

    @property
    def dev_dependency_list(self) -> list[PackageJsonDependency]:
        return [
            PackageJsonDependency(name, version, DependencyType.DEV)
            for name, version in self._section(DependencyType.DEV).items()
        ]

    def installable_specifiers(self) -> dict[str, str]:
        """Every name-to-version entry the package manager will install (peers excluded)."""

        out: dict[str, str] = {}
        for dependency_type in (DependencyType.REGULAR, DependencyType.OPTIONAL, DependencyType.DEV):
            out.update(self._section(dependency_type))
        return out

    def add_or_update_dependency(
        self, name: str, version: str, dependency_type: DependencyType
    ) -> None:
        section = self._data.get(dependency_type.value)
        if section is None:
            section = {}
            self._data[dependency_type.value] = section
        if section.get(name) == version:
            return
        section[name] = version
        self._modified = True

    def save_if_modified(self) -> bool:
        if not self._modified:
            return False
        self.path.write_text(render_json(self._data), encoding="utf-8")
        self._modified = False
        return True
