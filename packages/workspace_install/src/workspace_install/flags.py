from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from workspace_install.config import InstallOptions, WorkspaceConfiguration
from workspace_install.manifest import render_json


class InstallFlag:
    """
    Marker written after a successful install.

    The file stores the option state the install ran with and only counts as valid while that
    state still matches. Its mtime is the reference for ``can_skip_install``.
    """

    def __init__(self, path: Path, state: dict[str, Any]) -> None:
        self.path = path
        self.state = state

    @classmethod
    def for_install(cls, config: WorkspaceConfiguration, options: InstallOptions) -> InstallFlag:
        pm = config.package_manager
        state: dict[str, Any] = {
            "packageManager": pm.name,
            "useWorkspaces": pm.use_workspaces,
            "variant": options.variant,
        }
        if pm.uses_local_store:
            state["storePath"] = config.store_path.as_posix()
        return cls(config.install_flag_path, state)

    def is_valid(self) -> bool:
        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return False
        return stored == self.state

    @property
    def mtime(self) -> float:
        return self.path.stat().st_mtime

    def create(self) -> None:
        # Always rewritten so the mtime moves forward even when the state is unchanged.
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_json(self.state), encoding="utf-8")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class LinkFlag:
    """Marks the shared temp environment as linked; read by the separate link step."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def create(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_json({}), encoding="utf-8")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def exists(self) -> bool:
        return self.path.exists()
