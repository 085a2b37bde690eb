from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from workspace_install.config import InstallOptions, Project, WorkspaceConfiguration
from workspace_install.console import warn
from workspace_install.errors import LockfileMutationNotAuthorized, UnsatisfiableLocalVersion
from workspace_install.manifest import DependencyType
from workspace_install.specifier import (
    SpecifierKind,
    classify,
    version_satisfies,
    workspace_reference_for,
)


@dataclass(frozen=True)
class DependencyEdit:
    name: str
    old_version: str
    new_version: str
    dependency_type: DependencyType


@dataclass(frozen=True)
class ProjectEdits:
    project: Project
    edits: tuple[DependencyEdit, ...] = field(default_factory=tuple)


def plan_project_edits(
    project: Project, *, config: WorkspaceConfiguration, options: InstallOptions
) -> ProjectEdits:
    """
    Compute the ``workspace:`` rewrites one project needs, without touching its manifest.

    Raises
    ------
    UnsatisfiableLocalVersion
        A sibling project with the dependency's name exists, is not listed as a cyclic
        dependency, and its version does not satisfy the declared range.
    LockfileMutationNotAuthorized
        The dependency should be rewritten but lockfile updates are not allowed.
    """

    manifest = project.manifest
    edits: list[DependencyEdit] = []
    for dependency in [*manifest.dependency_list, *manifest.dev_dependency_list]:
        # Peer ranges are constraints the package manager enforces itself.
        if dependency.dependency_type is DependencyType.PEER:
            continue

        specifier = classify(dependency.name, dependency.version)
        if specifier.kind is SpecifierKind.WORKSPACE:
            continue
        if not specifier.is_local_candidate:
            continue

        local_project = config.get_project_by_name(dependency.name)
        if local_project is None or dependency.name in project.cyclic_dependency_projects:
            continue

        if not version_satisfies(local_project.version, specifier.version_specifier):
            raise UnsatisfiableLocalVersion(
                project_name=project.name,
                dependency_name=dependency.name,
                version_text=dependency.version,
            )

        if not options.allow_lockfile_updates:
            raise LockfileMutationNotAuthorized(
                project_name=project.name,
                dependency_name=dependency.name,
                version_text=dependency.version,
            )

        if options.full_upgrade:
            edits.append(
                DependencyEdit(
                    name=dependency.name,
                    old_version=dependency.version,
                    new_version=workspace_reference_for(specifier),
                    dependency_type=dependency.dependency_type,
                )
            )

    return ProjectEdits(project=project, edits=tuple(edits))


def plan_workspace_edits(
    config: WorkspaceConfiguration, options: InstallOptions
) -> list[ProjectEdits]:
    """Plan edits for every project; only projects with at least one edit are returned."""

    planned: list[ProjectEdits] = []
    for project in config.projects:
        project_edits = plan_project_edits(project, config=config, options=options)
        if project_edits.edits:
            planned.append(project_edits)
    return planned


def apply_workspace_edits(planned: Iterable[ProjectEdits]) -> list[str]:
    """Apply planned edits and persist each changed manifest. Returns the saved project names."""

    saved: list[str] = []
    for project_edits in planned:
        manifest = project_edits.project.manifest
        for edit in project_edits.edits:
            manifest.add_or_update_dependency(edit.name, edit.new_version, edit.dependency_type)
        if manifest.save_if_modified():
            warn(
                f'"{project_edits.project.name}" depends on one or more workspace packages which '
                'did not use "workspace:" notation. The package.json has been modified and must '
                "be committed to source control."
            )
            saved.append(project_edits.project.name)
    return saved
