from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from workspace_install.config import InstallOptions, load_workspace_configuration
from workspace_install.errors import LockfileMutationNotAuthorized, UnsatisfiableLocalVersion
from workspace_install.reconcile import (
    apply_workspace_edits,
    plan_project_edits,
    plan_workspace_edits,
)

FULL_UPGRADE = InstallOptions(full_upgrade=True, allow_lockfile_updates=True)


def _pkg(name: str, version: str = "1.0.0", **sections: dict[str, str]) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": name, "version": version}
    payload.update(sections)
    return payload


def _read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def test_full_upgrade_rewrites_range_to_workspace_reference(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg("a", dependencies={"b": "^1.0.0", "lodash": "^4.17.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        }
    )
    config = load_workspace_configuration(root, env={})

    saved = apply_workspace_edits(plan_workspace_edits(config, FULL_UPGRADE))

    assert saved == ["a"]
    payload = _read_json(root / "apps/a/package.json")
    assert payload["dependencies"] == {"b": "workspace:^1.0.0", "lodash": "^4.17.0"}
    assert (root / "apps/a/package.json").read_text(encoding="utf-8").endswith("}\n")


def test_exact_pin_becomes_workspace_star(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg("a", devDependencies={"b": "1.2.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        }
    )
    config = load_workspace_configuration(root, env={})

    planned = plan_project_edits(config.projects[0], config=config, options=FULL_UPGRADE)

    assert [(e.name, e.new_version) for e in planned.edits] == [("b", "workspace:*")]
    assert planned.edits[0].dependency_type.value == "devDependencies"


def test_unsatisfiable_version_fails_without_touching_any_manifest(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/c": _pkg("c", dependencies={"b": "^1.0.0"}),
            "apps/a": _pkg("a", dependencies={"b": "2.0.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        }
    )
    before = {
        folder: (root / folder / "package.json").read_text(encoding="utf-8")
        for folder in ("apps/a", "apps/c")
    }
    config = load_workspace_configuration(root, env={})

    with pytest.raises(UnsatisfiableLocalVersion) as excinfo:
        apply_workspace_edits(plan_workspace_edits(config, FULL_UPGRADE))

    assert excinfo.value.code == "unsatisfiable_local_version"
    assert '"a"' in str(excinfo.value)
    for folder, text in before.items():
        assert (root / folder / "package.json").read_text(encoding="utf-8") == text


def test_rewrite_requires_lockfile_update_authorization(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg("a", dependencies={"b": "^1.0.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        }
    )
    config = load_workspace_configuration(root, env={})

    with pytest.raises(LockfileMutationNotAuthorized):
        plan_workspace_edits(config, InstallOptions())


def test_lockfile_updates_without_full_upgrade_plan_nothing(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg("a", dependencies={"b": "^1.0.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        }
    )
    config = load_workspace_configuration(root, env={})

    assert plan_workspace_edits(config, InstallOptions(allow_lockfile_updates=True)) == []


def test_cyclic_dependency_projects_are_left_alone(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg("a", dependencies={"b": "2.0.0"}),
            "libs/b": _pkg("b", version="1.2.0"),
        },
        cyclic={"apps/a": ["b"]},
    )
    config = load_workspace_configuration(root, env={})

    assert plan_workspace_edits(config, FULL_UPGRADE) == []


def test_peer_and_workspace_dependencies_are_skipped(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": _pkg(
                "a",
                peerDependencies={"b": "2.0.0"},
                dependencies={"c": "workspace:*"},
            ),
            "libs/b": _pkg("b", version="1.2.0"),
            "libs/c": _pkg("c", version="0.1.0"),
        }
    )
    config = load_workspace_configuration(root, env={})

    assert plan_workspace_edits(config, FULL_UPGRADE) == []
    assert apply_workspace_edits([]) == []
