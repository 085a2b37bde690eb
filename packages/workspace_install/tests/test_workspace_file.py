from __future__ import annotations

import json
import os
from pathlib import Path

import yaml

from workspace_install.common_versions import load_common_versions
from workspace_install.config import load_workspace_configuration
from workspace_install.workspace_file import (
    CLIENT_PNPMFILE_FILENAME,
    PNPMFILE_SETTINGS_FILENAME,
    WorkspaceFile,
    build_workspace_file,
    generate_common_package_json,
    write_pnpmfile_shim,
)


def test_workspace_file_lists_projects_relative_to_temp_folder(make_workspace) -> None:
    root = make_workspace(
        {
            "apps/a": {"name": "a", "version": "1.0.0"},
            "libs/b": {"name": "b", "version": "1.0.0"},
        }
    )
    config = load_workspace_configuration(root, env={})

    workspace_file = build_workspace_file(config)
    assert workspace_file.save() is True

    payload = yaml.safe_load(config.workspace_file_path.read_text(encoding="utf-8"))
    assert payload == {"packages": ["../../apps/a", "../../libs/b"]}


def test_workspace_file_is_not_rewritten_when_unchanged(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={})

    assert build_workspace_file(config).save() is True
    os.utime(config.workspace_file_path, (1_000_000, 1_000_000))

    assert build_workspace_file(config).save() is False
    assert config.workspace_file_path.stat().st_mtime == 1_000_000


def test_add_package_ignores_duplicates(tmp_path: Path) -> None:
    workspace_file = WorkspaceFile(tmp_path / "temp" / "pnpm-workspace.yaml")
    workspace_file.add_package(tmp_path / "apps" / "a")
    workspace_file.add_package(tmp_path / "apps" / "a")
    assert workspace_file.packages == ("../apps/a",)


def test_common_package_json_written_once(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={})

    assert generate_common_package_json(config) is True
    assert generate_common_package_json(config) is False


def test_pnpmfile_shim_carries_common_versions(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={})
    config.common_versions_path(None).write_text(
        '[preferred_versions]\nlodash = "~4.17.21"\n\n'
        '[allowed_alternative_versions]\ntypescript = ["~4.9.0"]\n',
        encoding="utf-8",
    )
    common_versions = load_common_versions(config.common_versions_path(None))

    assert write_pnpmfile_shim(config, None, common_versions) is True

    settings = json.loads(
        (config.temp_folder / PNPMFILE_SETTINGS_FILENAME).read_text(encoding="utf-8")
    )
    assert settings["allPreferredVersions"] == {"lodash": "~4.17.21"}
    assert settings["allowedAlternativeVersions"] == {"typescript": ["~4.9.0"]}
    assert settings["useClientPnpmfile"] is False
    shim = config.temp_pnpmfile_path.read_text(encoding="utf-8")
    assert "pnpmfileSettings.json" in shim
    assert "readPackage" in shim
    assert not (config.temp_folder / CLIENT_PNPMFILE_FILENAME).exists()

    assert write_pnpmfile_shim(config, None, common_versions) is False


def test_pnpmfile_shim_keeps_repository_hook_as_client(make_workspace) -> None:
    root = make_workspace({"apps/a": {"name": "a", "version": "1.0.0"}})
    config = load_workspace_configuration(root, env={})
    hook = config.pnpmfile_path(None)
    hook.write_text("module.exports = { hooks: {} };\n", encoding="utf-8")
    common_versions = load_common_versions(config.common_versions_path(None))

    assert write_pnpmfile_shim(config, None, common_versions) is True

    client = config.temp_folder / CLIENT_PNPMFILE_FILENAME
    assert client.read_text(encoding="utf-8") == "module.exports = { hooks: {} };\n"
    assert config.temp_pnpmfile_path.read_text(encoding="utf-8") != hook.read_text(
        encoding="utf-8"
    )
    settings = json.loads(
        (config.temp_folder / PNPMFILE_SETTINGS_FILENAME).read_text(encoding="utf-8")
    )
    assert settings["useClientPnpmfile"] is True

    hook.unlink()
    assert write_pnpmfile_shim(config, None, common_versions) is True
    assert not client.exists()
    settings = json.loads(
        (config.temp_folder / PNPMFILE_SETTINGS_FILENAME).read_text(encoding="utf-8")
    )
    assert settings["useClientPnpmfile"] is False
