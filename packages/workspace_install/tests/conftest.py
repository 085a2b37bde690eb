from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

WorkspaceFactory = Callable[..., Path]


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def make_workspace(tmp_path: Path) -> WorkspaceFactory:
    """
    Lay out a workspace root under ``tmp_path``.

    ``projects`` maps a project folder (relative to the root) to its package.json payload.
    ``cyclic`` maps a project folder to its cyclic_dependency_projects list.
    """

    def _make(
        projects: dict[str, dict[str, Any]],
        *,
        cyclic: dict[str, list[str]] | None = None,
        package_manager: str = "",
        extra: str = "",
    ) -> Path:
        root = tmp_path / "repo"
        lines = ["[workspace]", "", "[package_manager]", package_manager.strip(), ""]
        for folder, manifest in projects.items():
            _write(root / folder / "package.json", json.dumps(manifest, indent=2) + "\n")
            lines.append("[[projects]]")
            lines.append(f'folder = "{folder}"')
            if cyclic and folder in cyclic:
                lines.append(f"cyclic_dependency_projects = {json.dumps(cyclic[folder])}")
            lines.append("")
        lines.append(extra)
        _write(root / "workspace.toml", "\n".join(lines) + "\n")
        (root / "common" / "config").mkdir(parents=True, exist_ok=True)
        return root

    return _make
