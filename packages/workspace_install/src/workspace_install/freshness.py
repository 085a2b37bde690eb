from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from workspace_install.config import CONFIG_FILENAME, InstallOptions, Project, WorkspaceConfiguration
from workspace_install.fsutil import is_file_timestamp_current
from workspace_install.lockfile import PnpmLockfile
from workspace_install.repo_state import RepoStateRecord


@dataclass(frozen=True)
class FreshnessVerdict:
    is_up_to_date: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def with_stale_projects(self, project_names: Iterable[str]) -> FreshnessVerdict:
        names = list(project_names)
        if not names:
            return self
        return FreshnessVerdict(
            is_up_to_date=False,
            warnings=self.warnings
            + tuple(
                f'Project "{name}" was updated to use "workspace:" references.' for name in names
            ),
        )


def evaluate_lockfile_freshness(
    lockfile: PnpmLockfile | None,
    *,
    config: WorkspaceConfiguration,
    repo_state: RepoStateRecord,
    preferred_versions_hash: str,
    full_upgrade: bool,
    projects: Iterable[Project] | None = None,
) -> FreshnessVerdict:
    """
    Decide whether ``lockfile`` still describes the workspace.

    Every failed check adds one warning; the checks do not stop at the first failure so a
    single re-run can address all of them. Nothing here touches the filesystem apart from the
    already-loaded inputs, so evaluating the same inputs twice gives the same verdict.
    """

    warnings: list[str] = []
    up_to_date = True
    projects = list(config.projects if projects is None else projects)

    if lockfile is None:
        up_to_date = False
        if not full_upgrade:
            warnings.append(
                "The lockfile does not exist yet. Run \"workspace-install update\" to create it."
            )
    else:
        if not lockfile.is_workspace_compatible and not full_upgrade:
            warnings.append(
                "The lockfile has not been updated to support workspaces. Run "
                '"workspace-install update --full" to update the lockfile.'
            )
            up_to_date = False

        for key in lockfile.find_orphaned_projects(config):
            warnings.append(
                f'Your lockfile references "{key}" which was not found in {CONFIG_FILENAME}'
            )
            up_to_date = False

    if not repo_state.is_valid:
        warnings.append(
            f"The {repo_state.path.name} file is invalid. There may be a merge conflict marker "
            "in the file."
        )
        up_to_date = False
    elif repo_state.preferred_versions_hash != preferred_versions_hash:
        warnings.append("Preferred versions from common-versions.toml have been modified.")
        up_to_date = False

    if lockfile is not None:
        for project in projects:
            if lockfile.is_workspace_project_modified(project, config):
                warnings.append(
                    f'Dependencies of project "{project.name}" do not match the current lockfile.'
                )
                up_to_date = False

    return FreshnessVerdict(is_up_to_date=up_to_date, warnings=tuple(warnings))


def potentially_changed_paths(
    config: WorkspaceConfiguration,
    options: InstallOptions,
    *,
    include_shared_lockfile: bool = True,
) -> list[Path]:
    paths: list[Path] = [config.common_node_modules_folder]
    if include_shared_lockfile:
        paths.append(config.committed_lockfile_path(options.variant))
    paths.append(config.common_versions_path(options.variant))

    if config.package_manager.name == "pnpm":
        hook = config.pnpmfile_path(options.variant)
        if hook.exists():
            paths.append(hook)
        if config.workspace_file_path.exists():
            paths.append(config.workspace_file_path)

    paths.extend(p.node_modules_folder for p in config.projects)
    paths.extend(p.package_json_path for p in config.projects)
    return paths


def can_skip_install(
    reference_mtime: float,
    config: WorkspaceConfiguration,
    options: InstallOptions,
    *,
    include_shared_lockfile: bool = True,
) -> bool:
    """Timestamp shortcut: a missing input counts as changed."""

    paths = potentially_changed_paths(
        config, options, include_shared_lockfile=include_shared_lockfile
    )
    return is_file_timestamp_current(reference_mtime, paths)
