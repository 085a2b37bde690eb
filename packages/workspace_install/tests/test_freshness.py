from __future__ import annotations

import os
import time
from pathlib import Path

from workspace_install.common_versions import load_common_versions
from workspace_install.config import InstallOptions, WorkspaceConfiguration, load_workspace_configuration
from workspace_install.freshness import (
    can_skip_install,
    evaluate_lockfile_freshness,
    potentially_changed_paths,
)
from workspace_install.lockfile import PnpmLockfile
from workspace_install.repo_state import load_repo_state
from workspace_install.workspace_file import build_workspace_file

LOCKFILE = """\
lockfileVersion: '6.0'
importers:
  .: {}
  ../../apps/a:
    dependencies:
      lodash:
        specifier: ^4.17.0
        version: 4.17.21
packages:
  /lodash@4.17.21:
    resolution: {integrity: sha512-lodash}
"""


def _setup(make_workspace, lockfile_text: str | None = LOCKFILE) -> WorkspaceConfiguration:
    root = make_workspace(
        {"apps/a": {"name": "a", "version": "1.0.0", "dependencies": {"lodash": "^4.17.0"}}}
    )
    config = load_workspace_configuration(root, env={})
    if lockfile_text is not None:
        config.committed_lockfile_path(None).write_text(lockfile_text, encoding="utf-8")
    (config.config_folder / "common-versions.toml").write_text(
        '[preferred_versions]\nlodash = "^4.17.0"\n', encoding="utf-8"
    )
    preferred = load_common_versions(config.common_versions_path(None)).preferred_versions_hash()
    load_repo_state(config.repo_state_path(None)).refresh(preferred)
    return config


def _evaluate(config: WorkspaceConfiguration, *, full_upgrade: bool = False):
    return evaluate_lockfile_freshness(
        PnpmLockfile.load(config.committed_lockfile_path(None)),
        config=config,
        repo_state=load_repo_state(config.repo_state_path(None)),
        preferred_versions_hash=load_common_versions(
            config.common_versions_path(None)
        ).preferred_versions_hash(),
        full_upgrade=full_upgrade,
    )


def test_matching_lockfile_is_up_to_date(make_workspace) -> None:
    config = _setup(make_workspace)
    verdict = _evaluate(config)
    assert verdict.is_up_to_date
    assert verdict.warnings == ()


def test_orphaned_project_warns_once_per_orphan_and_is_idempotent(make_workspace) -> None:
    config = _setup(make_workspace, LOCKFILE.replace("packages:", "  ../../apps/gone: {}\npackages:"))

    first = _evaluate(config)
    second = _evaluate(config)

    assert not first.is_up_to_date
    assert first.warnings == (
        'Your lockfile references "../../apps/gone" which was not found in workspace.toml',
    )
    assert first == second


def test_invalid_repo_state_is_stale(make_workspace) -> None:
    config = _setup(make_workspace)
    config.repo_state_path(None).write_text(
        '<<<<<<< HEAD\n{"preferredVersionsHash": "a"}\n=======\n{}\n>>>>>>> other\n',
        encoding="utf-8",
    )

    verdict = _evaluate(config)
    assert not verdict.is_up_to_date
    assert any("merge conflict" in w for w in verdict.warnings)


def test_changed_preferred_versions_are_stale(make_workspace) -> None:
    config = _setup(make_workspace)
    config.common_versions_path(None).write_text(
        '[preferred_versions]\nlodash = "^4.18.0"\n', encoding="utf-8"
    )

    verdict = _evaluate(config)
    assert not verdict.is_up_to_date
    assert verdict.warnings == ("Preferred versions from common-versions.toml have been modified.",)


def test_modified_project_dependencies_are_stale(make_workspace) -> None:
    config = _setup(make_workspace)
    config.projects[0].manifest.add_or_update_dependency(
        "left-pad", "^1.3.0", config.projects[0].manifest.dependency_list[0].dependency_type
    )

    verdict = _evaluate(config)
    assert verdict.warnings == ('Dependencies of project "a" do not match the current lockfile.',)


def test_all_failures_are_reported_together(make_workspace) -> None:
    config = _setup(make_workspace, LOCKFILE.replace("packages:", "  ../../apps/gone: {}\npackages:"))
    config.common_versions_path(None).write_text("", encoding="utf-8")

    verdict = _evaluate(config)
    assert len(verdict.warnings) == 2


def test_missing_lockfile(make_workspace) -> None:
    config = _setup(make_workspace, lockfile_text=None)

    assert len(_evaluate(config).warnings) == 1
    full = _evaluate(config, full_upgrade=True)
    assert not full.is_up_to_date
    assert full.warnings == ()


def test_lockfile_without_importers_is_not_workspace_compatible(make_workspace) -> None:
    config = _setup(make_workspace, "lockfileVersion: 5.3\ndependencies: {}\n")

    verdict = _evaluate(config)
    assert not verdict.is_up_to_date
    assert any("has not been updated to support workspaces" in w for w in verdict.warnings)


def _age_inputs(config: WorkspaceConfiguration, seconds_ago: float) -> float:
    config.common_node_modules_folder.mkdir(parents=True, exist_ok=True)
    for project in config.projects:
        project.node_modules_folder.mkdir(parents=True, exist_ok=True)
    stamp = time.time() - seconds_ago
    for path in (
        config.common_node_modules_folder,
        config.committed_lockfile_path(None),
        config.common_versions_path(None),
        *(p.node_modules_folder for p in config.projects),
        *(p.package_json_path for p in config.projects),
    ):
        os.utime(path, (stamp, stamp))
    return stamp


def test_cheap_gate_skips_when_nothing_changed(make_workspace) -> None:
    config = _setup(make_workspace)
    stamp = _age_inputs(config, 60)
    assert can_skip_install(stamp + 1, config, InstallOptions())


def test_cheap_gate_runs_when_an_input_is_newer(make_workspace) -> None:
    config = _setup(make_workspace)
    stamp = _age_inputs(config, 60)
    package_json: Path = config.projects[0].package_json_path
    os.utime(package_json, (stamp + 30, stamp + 30))
    assert not can_skip_install(stamp + 1, config, InstallOptions())


def test_cheap_gate_treats_missing_input_as_changed(make_workspace) -> None:
    config = _setup(make_workspace)
    stamp = _age_inputs(config, 60)
    config.common_versions_path(None).unlink()
    assert not can_skip_install(stamp + 1, config, InstallOptions())


def _age_paths(paths: list[Path], seconds_ago: float) -> float:
    stamp = time.time() - seconds_ago
    for path in paths:
        os.utime(path, (stamp, stamp))
    return stamp


def test_cheap_gate_runs_when_workspace_file_is_newer(make_workspace) -> None:
    config = _setup(make_workspace)
    build_workspace_file(config).save()
    stamp = _age_inputs(config, 60)
    os.utime(config.workspace_file_path, (stamp, stamp))
    assert can_skip_install(stamp + 1, config, InstallOptions())

    os.utime(config.workspace_file_path, (stamp + 30, stamp + 30))
    assert not can_skip_install(stamp + 1, config, InstallOptions())


def test_cheap_gate_runs_when_variant_pnpmfile_is_newer(make_workspace) -> None:
    root = make_workspace(
        {"apps/a": {"name": "a", "version": "1.0.0"}},
        extra='[[variants]]\nname = "legacy"\n',
    )
    config = load_workspace_configuration(root, env={})
    options = InstallOptions(variant="legacy")
    hook = config.pnpmfile_path("legacy")
    hook.parent.mkdir(parents=True)
    for path in (
        config.committed_lockfile_path("legacy"),
        config.common_versions_path("legacy"),
        hook,
    ):
        path.write_text("", encoding="utf-8")
    config.common_node_modules_folder.mkdir(parents=True)
    config.projects[0].node_modules_folder.mkdir(parents=True)

    paths = potentially_changed_paths(config, options)
    assert hook in paths
    stamp = _age_paths(paths, 60)
    assert can_skip_install(stamp + 1, config, options)

    os.utime(hook, (stamp + 30, stamp + 30))
    assert not can_skip_install(stamp + 1, config, options)


def test_cheap_gate_without_shared_lockfile(make_workspace) -> None:
    config = _setup(make_workspace, lockfile_text=None)
    config.common_node_modules_folder.mkdir(parents=True)
    config.projects[0].node_modules_folder.mkdir(parents=True)
    options = InstallOptions()

    paths = potentially_changed_paths(config, options, include_shared_lockfile=False)
    assert config.committed_lockfile_path(None) not in paths
    stamp = _age_paths(paths, 60)

    assert can_skip_install(stamp + 1, config, options, include_shared_lockfile=False)
    assert not can_skip_install(stamp + 1, config, options)
