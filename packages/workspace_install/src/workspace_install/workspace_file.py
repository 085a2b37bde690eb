from __future__ import annotations

import importlib.resources
import os
from pathlib import Path

import yaml

from workspace_install.common_versions import CommonVersions
from workspace_install.config import WorkspaceConfiguration
from workspace_install.fsutil import copy_file_if_changed, write_text_if_changed
from workspace_install.manifest import render_json

_HEADER = "# Generated by workspace-install. Do not edit; changes are overwritten on every install.\n"

PNPMFILE_SETTINGS_FILENAME = "pnpmfileSettings.json"
CLIENT_PNPMFILE_FILENAME = "clientPnpmfile.cjs"


def _relative_posix(target: Path, start: Path) -> str:
    return Path(os.path.relpath(target, start)).as_posix()


class WorkspaceFile:
    """
    The ``pnpm-workspace.yaml`` consumed by the package manager for workspace discovery.

    Rebuilt from scratch on every run; ``save`` leaves the file (and its timestamp) alone when
    the rendered content matches what is already on disk.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._packages: list[str] = []
        self._seen: set[str] = set()

    @property
    def packages(self) -> tuple[str, ...]:
        return tuple(self._packages)

    def add_package(self, package_folder: Path) -> None:
        entry = _relative_posix(package_folder, self.path.parent)
        if entry in self._seen:
            return
        self._seen.add(entry)
        self._packages.append(entry)

    def render(self) -> str:
        body = yaml.safe_dump({"packages": list(self._packages)}, sort_keys=False)
        return _HEADER + body

    def save(self, *, only_if_changed: bool = True) -> bool:
        text = self.render()
        if only_if_changed:
            return write_text_if_changed(self.path, text)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")
        return True


def build_workspace_file(config: WorkspaceConfiguration) -> WorkspaceFile:
    workspace_file = WorkspaceFile(config.workspace_file_path)
    for project in config.projects:
        workspace_file.add_package(project.folder)
    return workspace_file


def generate_common_package_json(config: WorkspaceConfiguration) -> bool:
    payload = {
        "dependencies": {},
        "description": "Temporary file generated by workspace-install",
        "name": "workspace-common",
        "private": True,
        "version": "0.0.0",
    }
    return write_text_if_changed(config.common_package_json_path, render_json(payload))


def _pnpmfile_shim_source() -> str:
    return (
        importlib.resources.files("workspace_install")
        .joinpath("pnpmfile_shim.cjs")
        .read_text(encoding="utf-8")
    )


def write_pnpmfile_shim(
    config: WorkspaceConfiguration, variant: str | None, common_versions: CommonVersions
) -> bool:
    """
    Install the resolution hook that applies preferred versions to indirect dependencies.

    The variant's own ``pnpmfile.cjs``, when present, is copied beside the shim as the client
    pnpmfile and still runs after the preferred versions are applied. Returns True when any of
    the generated files changed.
    """

    temp_folder = config.temp_folder
    source = config.pnpmfile_path(variant)
    client = temp_folder / CLIENT_PNPMFILE_FILENAME

    changed = False
    has_client = source.exists()
    if has_client:
        changed = copy_file_if_changed(source, client) or changed
    elif client.exists():
        client.unlink()
        changed = True

    settings = {
        "allPreferredVersions": dict(sorted(common_versions.preferred_versions.items())),
        "allowedAlternativeVersions": {
            name: list(versions)
            for name, versions in sorted(common_versions.allowed_alternative_versions.items())
        },
        "semverPath": None,
        "useClientPnpmfile": has_client,
    }
    changed = (
        write_text_if_changed(temp_folder / PNPMFILE_SETTINGS_FILENAME, render_json(settings))
        or changed
    )
    changed = write_text_if_changed(config.temp_pnpmfile_path, _pnpmfile_shim_source()) or changed
    return changed
