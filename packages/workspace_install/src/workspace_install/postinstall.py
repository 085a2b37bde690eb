from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from workspace_install.config import Project, WorkspaceConfiguration
from workspace_install.console import eprint
from workspace_install.errors import PostInstallError
from workspace_install.flags import LinkFlag
from workspace_install.lockfile import LockfileError, PnpmLockfile, delete_project_lock_subset


@dataclass(frozen=True)
class LockSubsetOutcome:
    project_name: str
    written: bool
    deleted: bool


def _default_parallelism(project_count: int) -> int:
    return max(1, min(project_count, 32, (os.cpu_count() or 1) + 4))


def _update_project_subset(
    lockfile: PnpmLockfile, project: Project, config: WorkspaceConfiguration
) -> LockSubsetOutcome:
    subset = lockfile.get_project_lock_subset(project, config)
    if subset is None:
        return LockSubsetOutcome(project.name, written=False, deleted=delete_project_lock_subset(project))
    return LockSubsetOutcome(project.name, written=subset.update(), deleted=False)


def write_project_lock_subsets(
    lockfile: PnpmLockfile,
    config: WorkspaceConfiguration,
    *,
    max_workers: int | None = None,
) -> list[LockSubsetOutcome]:
    """
    Write (or delete) every project's lock subset, in parallel.

    Projects are independent, so they are processed concurrently with a bounded pool. The batch
    is all-or-nothing: every worker runs to completion and then any failure is raised.
    """

    projects = list(config.projects)
    if not projects:
        return []
    workers = max_workers or config.package_manager.max_parallelism or _default_parallelism(len(projects))

    outcomes: dict[str, LockSubsetOutcome] = {}
    failures: dict[str, BaseException] = {}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(_update_project_subset, lockfile, project, config): project
            for project in projects
        }
        for future in as_completed(futures):
            project = futures[future]
            try:
                outcomes[project.name] = future.result()
            except (OSError, LockfileError) as e:
                failures[project.name] = e

    if failures:
        for name in sorted(failures):
            eprint(f"ERROR: Failed to update the lock subset for {name!r}: {failures[name]}")
        raise PostInstallError(
            "Failed to update lock subsets for: " + ", ".join(sorted(failures)),
            failed_projects=sorted(failures),
        )
    return [outcomes[p.name] for p in projects]


def reconcile_after_install(
    config: WorkspaceConfiguration, *, max_workers: int | None = None
) -> list[LockSubsetOutcome]:
    # The temp lockfile comes from the install that just ran. It can be newer than the
    # committed one because filtered installs are not copied back.
    lockfile = PnpmLockfile.load(config.temp_lockfile_path)
    if lockfile is None:
        raise PostInstallError(
            f"The install did not produce a lockfile at {config.temp_lockfile_path}.",
            failed_projects=[p.name for p in config.projects],
        )
    outcomes = write_project_lock_subsets(lockfile, config, max_workers=max_workers)
    LinkFlag(config.link_flag_path).create()
    return outcomes
