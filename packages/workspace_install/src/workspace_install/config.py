from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from workspace_install.errors import ConfigurationError
from workspace_install.manifest import PackageJsonEditor

CONFIG_FILENAME = "workspace.toml"
NODE_MODULES = "node_modules"
PACKAGE_JSON = "package.json"

TEMP_FOLDER_ENV_VAR = "WORKSPACE_TEMP_FOLDER"
PNPM_STORE_PATH_ENV_VAR = "WORKSPACE_PNPM_STORE_PATH"

_DEFAULT_TEMP_FOLDER = "common/temp"
_DEFAULT_CONFIG_FOLDER = "common/config"
_ALLOWED_PACKAGE_MANAGERS: frozenset[str] = frozenset({"pnpm", "npm", "yarn"})
_ALLOWED_STORE_MODES: frozenset[str] = frozenset({"local", "global"})


@dataclass
class Project:
    """One workspace member. Only the reconciler mutates ``manifest``."""

    name: str
    folder: Path
    relative_folder: str
    manifest: PackageJsonEditor
    cyclic_dependency_projects: frozenset[str] = frozenset()

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def node_modules_folder(self) -> Path:
        return self.folder / NODE_MODULES

    @property
    def package_json_path(self) -> Path:
        return self.folder / PACKAGE_JSON

    @property
    def lock_subset_path(self) -> Path:
        return self.folder / ".workspace" / "temp" / "shrinkwrap-deps.json"


@dataclass(frozen=True)
class PackageManagerOptions:
    name: str = "pnpm"
    executable: str = "pnpm"
    store: Literal["local", "global"] = "local"
    store_path: Path | None = None
    strict_peer_dependencies: bool = False
    use_workspaces: bool = True
    max_parallelism: int | None = None

    @property
    def uses_local_store(self) -> bool:
        return self.name == "pnpm" and self.store == "local"


@dataclass(frozen=True)
class InstallOptions:
    variant: str | None = None
    full_upgrade: bool = False
    allow_lockfile_updates: bool = False
    max_install_attempts: int = 3
    filter_arguments: tuple[str, ...] = ()
    clean_install: bool = False
    recheck_lockfile: bool = False
    debug: bool = False
    network_concurrency: int | None = None

    def __post_init__(self) -> None:
        if self.max_install_attempts < 1:
            raise ConfigurationError("max_install_attempts must be at least 1.")
        if self.full_upgrade and not self.allow_lockfile_updates:
            raise ConfigurationError("A full upgrade requires lockfile updates to be allowed.")

    @property
    def is_filtered_install(self) -> bool:
        return bool(self.filter_arguments)


@dataclass
class WorkspaceConfiguration:
    repo_root: Path
    temp_folder: Path
    config_folder: Path
    package_manager: PackageManagerOptions
    projects: list[Project]
    variants: frozenset[str] = frozenset()
    temp_folder_override: str | None = None
    build_cache: dict[str, Any] | None = None
    _by_name: dict[str, Project] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._by_name = {p.name: p for p in self.projects}

    def get_project_by_name(self, name: str) -> Project | None:
        return self._by_name.get(name)

    def try_get_project_for_path(self, folder: Path) -> Project | None:
        resolved = folder.resolve()
        for project in self.projects:
            if project.folder.resolve() == resolved:
                return project
        return None

    def _variant_config_folder(self, variant: str | None) -> Path:
        if variant is None:
            return self.config_folder
        return self.config_folder / "variants" / variant

    def committed_lockfile_path(self, variant: str | None) -> Path:
        return self._variant_config_folder(variant) / "pnpm-lock.yaml"

    def common_versions_path(self, variant: str | None) -> Path:
        return self._variant_config_folder(variant) / "common-versions.toml"

    def repo_state_path(self, variant: str | None) -> Path:
        return self._variant_config_folder(variant) / "repo-state.json"

    def pnpmfile_path(self, variant: str | None) -> Path:
        return self._variant_config_folder(variant) / "pnpmfile.cjs"

    @property
    def temp_lockfile_path(self) -> Path:
        return self.temp_folder / "pnpm-lock.yaml"

    @property
    def temp_pnpmfile_path(self) -> Path:
        return self.temp_folder / ".pnpmfile.cjs"

    @property
    def workspace_file_path(self) -> Path:
        return self.temp_folder / "pnpm-workspace.yaml"

    @property
    def common_package_json_path(self) -> Path:
        return self.temp_folder / PACKAGE_JSON

    @property
    def common_node_modules_folder(self) -> Path:
        return self.temp_folder / NODE_MODULES

    @property
    def install_flag_path(self) -> Path:
        return self.temp_folder / "last-install.flag"

    @property
    def link_flag_path(self) -> Path:
        return self.temp_folder / "last-link.flag"

    @property
    def recycler_folder(self) -> Path:
        return self.temp_folder / "recycler"

    @property
    def store_path(self) -> Path:
        if self.package_manager.store_path is not None:
            return self.package_manager.store_path
        return self.temp_folder / "pnpm-store"

    def ensure_variant_exists(self, variant: str | None) -> None:
        if variant is None:
            return
        if variant not in self.variants:
            known = ", ".join(sorted(self.variants)) or "(none)"
            raise ConfigurationError(
                f'Variant "{variant}" is not defined in {CONFIG_FILENAME}. Known variants: {known}.'
            )


def find_repo_root(start: Path | None = None) -> Path:
    cur = (start or Path.cwd()).resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / CONFIG_FILENAME).exists():
            return candidate
    raise ConfigurationError(
        f"Could not find the workspace root (expected {CONFIG_FILENAME} in a parent directory)."
    )


def _ensure_no_unknown_keys(*, data: Mapping[str, Any], allowed: set[str], where: str) -> None:
    unknown = set(data) - allowed
    if not unknown:
        return
    unknown_list = ", ".join(sorted(unknown))
    allowed_list = ", ".join(sorted(allowed))
    raise ConfigurationError(f"Unknown keys in {where}: {unknown_list}. Allowed: {allowed_list}.")


def _table(data: Mapping[str, Any], key: str, *, path: Path) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Expected [{key}] to be a table in {path}.")
    return value


def _opt_str(data: Mapping[str, Any], key: str, *, where: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Expected non-empty string for {key} in {where}.")
    return value.strip()


def _opt_bool(data: Mapping[str, Any], key: str, *, default: bool, where: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"Expected boolean for {key} in {where}.")
    return value


def _resolve(root: Path, value: str) -> Path:
    raw = Path(value)
    return raw if raw.is_absolute() else (root / raw)


def _parse_package_manager(
    data: dict[str, Any], *, root: Path, path: Path, env: Mapping[str, str]
) -> PackageManagerOptions:
    where = f"[package_manager] of {path}"
    _ensure_no_unknown_keys(
        data=data,
        allowed={
            "name",
            "executable",
            "store",
            "store_path",
            "strict_peer_dependencies",
            "use_workspaces",
            "max_parallelism",
        },
        where=where,
    )
    name = _opt_str(data, "name", where=where) or "pnpm"
    if name not in _ALLOWED_PACKAGE_MANAGERS:
        allowed = ", ".join(sorted(_ALLOWED_PACKAGE_MANAGERS))
        raise ConfigurationError(f"Unsupported package manager {name!r} (allowed: {allowed}).")

    store = _opt_str(data, "store", where=where) or "local"
    if store not in _ALLOWED_STORE_MODES:
        raise ConfigurationError(f"Unsupported store mode {store!r} in {where} (expected local or global).")

    store_path: Path | None = None
    env_store_path = (env.get(PNPM_STORE_PATH_ENV_VAR) or "").strip()
    if env_store_path:
        store_path = _resolve(root, env_store_path)
    else:
        raw_store_path = _opt_str(data, "store_path", where=where)
        if raw_store_path is not None:
            store_path = _resolve(root, raw_store_path)

    max_parallelism = data.get("max_parallelism")
    if max_parallelism is not None and (
        not isinstance(max_parallelism, int) or isinstance(max_parallelism, bool) or max_parallelism < 1
    ):
        raise ConfigurationError(f"Expected positive integer for max_parallelism in {where}.")

    return PackageManagerOptions(
        name=name,
        executable=_opt_str(data, "executable", where=where) or name,
        store=store,  # type: ignore[arg-type]
        store_path=store_path,
        strict_peer_dependencies=_opt_bool(
            data, "strict_peer_dependencies", default=False, where=where
        ),
        use_workspaces=_opt_bool(data, "use_workspaces", default=True, where=where),
        max_parallelism=max_parallelism,
    )


def _parse_projects(raw: Any, *, root: Path, path: Path) -> list[Project]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigurationError(f"Expected [[projects]] array of tables in {path}.")

    projects: list[Project] = []
    seen_names: set[str] = set()
    seen_folders: set[Path] = set()
    for idx, entry in enumerate(raw, start=1):
        where = f"projects[{idx}] of {path}"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Expected a table for {where}.")
        _ensure_no_unknown_keys(
            data=entry, allowed={"folder", "cyclic_dependency_projects"}, where=where
        )
        rel = _opt_str(entry, "folder", where=where)
        if rel is None:
            raise ConfigurationError(f"Missing folder for {where}.")
        folder = _resolve(root, rel).resolve()
        if folder in seen_folders:
            raise ConfigurationError(f"Project folder {rel!r} is declared more than once in {path}.")
        seen_folders.add(folder)

        cyclic_raw = entry.get("cyclic_dependency_projects", [])
        if not isinstance(cyclic_raw, list) or not all(isinstance(x, str) for x in cyclic_raw):
            raise ConfigurationError(f"Expected list of strings for cyclic_dependency_projects in {where}.")

        manifest = PackageJsonEditor.load(folder / PACKAGE_JSON)
        name = manifest.name
        if name in seen_names:
            raise ConfigurationError(f"Project name {name!r} is declared more than once in {path}.")
        seen_names.add(name)

        projects.append(
            Project(
                name=name,
                folder=folder,
                relative_folder=Path(rel).as_posix(),
                manifest=manifest,
                cyclic_dependency_projects=frozenset(cyclic_raw),
            )
        )
    return projects


def _parse_variants(raw: Any, *, path: Path) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, list):
        raise ConfigurationError(f"Expected [[variants]] array of tables in {path}.")
    names: set[str] = set()
    for idx, entry in enumerate(raw, start=1):
        where = f"variants[{idx}] of {path}"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Expected a table for {where}.")
        _ensure_no_unknown_keys(data=entry, allowed={"name", "description"}, where=where)
        name = _opt_str(entry, "name", where=where)
        if name is None:
            raise ConfigurationError(f"Missing name for {where}.")
        names.add(name)
    return frozenset(names)


def load_workspace_configuration(
    repo_root: Path, *, env: Mapping[str, str] | None = None
) -> WorkspaceConfiguration:
    env = os.environ if env is None else env
    root = repo_root.resolve()
    path = root / CONFIG_FILENAME
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Missing {CONFIG_FILENAME}: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e

    _ensure_no_unknown_keys(
        data=data,
        allowed={"workspace", "package_manager", "projects", "variants", "build_cache"},
        where=str(path),
    )

    workspace = _table(data, "workspace", path=path)
    _ensure_no_unknown_keys(
        data=workspace, allowed={"temp_folder", "config_folder"}, where=f"[workspace] of {path}"
    )
    where = f"[workspace] of {path}"
    temp_folder = _resolve(root, _opt_str(workspace, "temp_folder", where=where) or _DEFAULT_TEMP_FOLDER)
    config_folder = _resolve(
        root, _opt_str(workspace, "config_folder", where=where) or _DEFAULT_CONFIG_FOLDER
    )

    temp_folder_override = (env.get(TEMP_FOLDER_ENV_VAR) or "").strip() or None
    if temp_folder_override is not None:
        temp_folder = _resolve(root, temp_folder_override)

    return WorkspaceConfiguration(
        repo_root=root,
        temp_folder=temp_folder,
        config_folder=config_folder,
        package_manager=_parse_package_manager(
            _table(data, "package_manager", path=path), root=root, path=path, env=env
        ),
        projects=_parse_projects(data.get("projects"), root=root, path=path),
        variants=_parse_variants(data.get("variants"), path=path),
        temp_folder_override=temp_folder_override,
        build_cache=_table(data, "build_cache", path=path) or None,
    )
