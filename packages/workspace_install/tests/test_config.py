from __future__ import annotations

import pytest

from workspace_install.config import (
    PNPM_STORE_PATH_ENV_VAR,
    TEMP_FOLDER_ENV_VAR,
    InstallOptions,
    find_repo_root,
    load_workspace_configuration,
)
from workspace_install.errors import ConfigurationError
from workspace_install.fsutil import Recycler
from workspace_install.manager import WorkspaceInstallStrategy


def test_defaults(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={})

    assert config.temp_folder == root.resolve() / "common" / "temp"
    assert config.package_manager.name == "pnpm"
    assert config.package_manager.use_workspaces
    assert config.store_path == config.temp_folder / "pnpm-store"
    assert config.committed_lockfile_path(None) == config.config_folder / "pnpm-lock.yaml"
    assert [p.name for p in config.projects] == ["a"]
    assert config.get_project_by_name("a") is config.projects[0]
    assert config.build_cache is None


def test_unknown_keys_are_rejected(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}}, package_manager="colour = 1")
    with pytest.raises(ConfigurationError, match="colour"):
        load_workspace_configuration(root, env={})


def test_duplicate_project_names_are_rejected(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": {"name": "same", "version": "1.0.0"},
            "apps/b": {"name": "same", "version": "1.0.0"},
        }
    )
    with pytest.raises(ConfigurationError, match="more than once"):
        load_workspace_configuration(root, env={})


def test_store_path_env_override(make_workspace, tmp_path) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    store = tmp_path / "shared-store"
    config = load_workspace_configuration(root, env={PNPM_STORE_PATH_ENV_VAR: str(store)})
    assert config.store_path == store


def test_temp_folder_override_is_rejected_for_workspace_installs(make_workspace, tmp_path) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={TEMP_FOLDER_ENV_VAR: str(tmp_path / "t")})
    assert config.temp_folder == tmp_path / "t"

    strategy = WorkspaceInstallStrategy(config, InstallOptions(), Recycler(config.recycler_folder))
    with pytest.raises(ConfigurationError) as excinfo:
        strategy.prepare(None)
    assert PNPM_STORE_PATH_ENV_VAR in (excinfo.value.hint or "")


def test_variants(make_workspace) -> None:
    root = make_workspace(
        {"apps/a": {"name": "a", "version": "1.0.0"}},
        extra='[[variants]]\nname = "legacy"\ndescription = "Old toolchain"\n',
    )
    config = load_workspace_configuration(root, env={})

    config.ensure_variant_exists("legacy")
    assert config.committed_lockfile_path("legacy") == (
        config.config_folder / "variants" / "legacy" / "pnpm-lock.yaml"
    )
    with pytest.raises(ConfigurationError, match="not defined"):
        config.ensure_variant_exists("missing")


def test_find_repo_root_walks_parents(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    assert find_repo_root(root / "apps" / "a") == root.resolve()


def test_install_options_validation() -> None:
    with pytest.raises(ConfigurationError):
        InstallOptions(max_install_attempts=0)
    with pytest.raises(ConfigurationError):
        InstallOptions(full_upgrade=True)
    assert InstallOptions(filter_arguments=("--filter", "a...")).is_filtered_install
