from __future__ import annotations

from pathlib import Path
from typing import Protocol

from workspace_install.common_versions import load_common_versions
from workspace_install.config import (
    PNPM_STORE_PATH_ENV_VAR,
    TEMP_FOLDER_ENV_VAR,
    InstallOptions,
    WorkspaceConfiguration,
)
from workspace_install.console import eprint, warn_all
from workspace_install.errors import (
    CommandResult,
    ConfigurationError,
    LockfileOutOfDateError,
    PostInstallError,
    WorkspaceInstallError,
)
from workspace_install.executor import (
    InstallExecutor,
    package_manager_environment,
    push_common_args,
    recovery_action_for,
)
from workspace_install.flags import InstallFlag, LinkFlag
from workspace_install.freshness import FreshnessVerdict, can_skip_install, evaluate_lockfile_freshness
from workspace_install.fsutil import Recycler, copy_file_if_changed
from workspace_install.lockfile import PnpmLockfile
from workspace_install.postinstall import reconcile_after_install
from workspace_install.reconcile import apply_workspace_edits, plan_workspace_edits
from workspace_install.repo_state import load_repo_state
from workspace_install.workspace_file import (
    build_workspace_file,
    generate_common_package_json,
    write_pnpmfile_shim,
)


class InstallStrategy(Protocol):
    uses_shared_lockfile: bool

    def validate(self) -> None: ...

    def prepare(self, lockfile: PnpmLockfile | None) -> FreshnessVerdict: ...

    def can_skip(self, flag: InstallFlag) -> bool: ...

    def install(self, *, clean_install: bool) -> None: ...

    def post_install(self) -> None: ...

    def push_args(self, args: list[str]) -> None: ...


class WorkspaceInstallStrategy:
    """One recursive package manager install over a generated workspace in the temp folder."""

    uses_shared_lockfile = True

    def __init__(
        self, config: WorkspaceConfiguration, options: InstallOptions, recycler: Recycler
    ) -> None:
        self.config = config
        self.options = options
        self.recycler = recycler

    def push_args(self, args: list[str]) -> None:
        if self.config.package_manager.name == "pnpm":
            args.append("--recursive")
            args.extend(["--link-workspace-packages", "false"])
            args.extend(self.options.filter_arguments)
        push_common_args(args, self.config, self.options)

    def validate(self) -> None:
        if self.config.temp_folder_override is not None:
            raise ConfigurationError(
                f"The {TEMP_FOLDER_ENV_VAR} environment variable is not compatible with workspace "
                "installs.",
                hint=f"To move the pnpm store, set {PNPM_STORE_PATH_ENV_VAR} instead.",
            )

    def can_skip(self, flag: InstallFlag) -> bool:
        if not flag.is_valid():
            return False
        return can_skip_install(flag.mtime, self.config, self.options)

    def prepare(self, lockfile: PnpmLockfile | None) -> FreshnessVerdict:
        config = self.config
        eprint(f"\nUpdating workspace files in {config.temp_folder}")
        config.temp_folder.mkdir(parents=True, exist_ok=True)
        common_versions = load_common_versions(config.common_versions_path(self.options.variant))
        if config.package_manager.name == "pnpm":
            write_pnpmfile_shim(config, self.options.variant, common_versions)

        # Edits are planned for every project before any manifest is written, so a validation
        # failure leaves all files untouched.
        saved = apply_workspace_edits(plan_workspace_edits(config, self.options))

        verdict = evaluate_lockfile_freshness(
            lockfile,
            config=config,
            repo_state=load_repo_state(config.repo_state_path(self.options.variant)),
            preferred_versions_hash=common_versions.preferred_versions_hash(),
            full_upgrade=self.options.full_upgrade,
        ).with_stale_projects(saved)

        generate_common_package_json(config)
        # The skip check reads this file's timestamp; only touch it when the content changed.
        build_workspace_file(config).save(only_if_changed=True)
        return verdict

    def install(self, *, clean_install: bool) -> None:
        config = self.config
        pm = config.package_manager
        args = [pm.executable, "install"]
        self.push_args(args)

        eprint(f'\nRunning "{pm.name} install" in {config.temp_folder}\n')
        executor = InstallExecutor(
            output_folder=config.common_node_modules_folder,
            project_output_folders=[p.node_modules_folder for p in config.projects],
            recycler=self.recycler,
            max_attempts=self.options.max_install_attempts,
            recovery_action=recovery_action_for(
                config, self.recycler, config.common_node_modules_folder
            ),
            local_store_path=config.store_path if pm.uses_local_store else None,
        )
        executor.run(
            args,
            cwd=config.temp_folder,
            env=package_manager_environment(config),
            clean_install=clean_install,
        )

    def post_install(self) -> None:
        reconcile_after_install(self.config)


class PerProjectInstallStrategy:
    """Runs the package manager inside each project folder, one project at a time."""

    uses_shared_lockfile = False

    def __init__(
        self, config: WorkspaceConfiguration, options: InstallOptions, recycler: Recycler
    ) -> None:
        self.config = config
        self.options = options
        self.recycler = recycler

    def push_args(self, args: list[str]) -> None:
        push_common_args(args, self.config, self.options)

    def validate(self) -> None:
        if self.options.filter_arguments:
            raise ConfigurationError("Filtered installs require use_workspaces = true.")

    def can_skip(self, flag: InstallFlag) -> bool:
        if not flag.is_valid():
            return False
        # Each project resolves on its own; there is no shared lockfile to compare against.
        return can_skip_install(
            flag.mtime, self.config, self.options, include_shared_lockfile=False
        )

    def prepare(self, lockfile: PnpmLockfile | None) -> FreshnessVerdict:
        return FreshnessVerdict(is_up_to_date=True)

    def install(self, *, clean_install: bool) -> None:
        pm = self.config.package_manager
        for project in self.config.projects:
            args = [pm.executable, "install"]
            self.push_args(args)
            eprint(f'\nRunning "{pm.name} install" in {project.folder}\n')
            executor = InstallExecutor(
                output_folder=project.node_modules_folder,
                project_output_folders=(),
                recycler=self.recycler,
                max_attempts=self.options.max_install_attempts,
                recovery_action=recovery_action_for(
                    self.config, self.recycler, project.node_modules_folder
                ),
                local_store_path=None,
            )
            executor.run(
                args,
                cwd=project.folder,
                env=package_manager_environment(self.config),
                clean_install=clean_install,
            )
        self.config.common_node_modules_folder.mkdir(parents=True, exist_ok=True)

    def post_install(self) -> None:
        LinkFlag(self.config.link_flag_path).create()


def select_install_strategy(
    config: WorkspaceConfiguration, options: InstallOptions, recycler: Recycler
) -> InstallStrategy:
    if config.package_manager.use_workspaces:
        if config.package_manager.name != "pnpm":
            raise ConfigurationError(
                f"Workspace installs require pnpm (configured: {config.package_manager.name!r})."
            )
        return WorkspaceInstallStrategy(config, options, recycler)
    return PerProjectInstallStrategy(config, options, recycler)


class InstallManager:
    def __init__(
        self,
        config: WorkspaceConfiguration,
        options: InstallOptions,
        *,
        strategy: InstallStrategy | None = None,
    ) -> None:
        self.config = config
        self.options = options
        self.recycler = Recycler(config.recycler_folder)
        self._strategy = strategy
        self.skipped = False

    def run(self) -> CommandResult:
        try:
            self._run()
        except WorkspaceInstallError as e:
            return CommandResult.from_error(e)
        finally:
            self.recycler.purge()
        return CommandResult.success()

    def _run(self) -> None:
        config = self.config
        options = self.options
        config.ensure_variant_exists(options.variant)
        strategy = self._strategy or select_install_strategy(config, options, self.recycler)
        strategy.validate()

        flag = InstallFlag.for_install(config, options)
        may_skip = not (options.full_upgrade or options.clean_install or options.recheck_lockfile)
        if may_skip and strategy.can_skip(flag):
            eprint("Skipping package manager install: already up to date.")
            self.skipped = True
            return

        lockfile: PnpmLockfile | None = None
        if strategy.uses_shared_lockfile and not options.full_upgrade:
            lockfile = PnpmLockfile.load(config.committed_lockfile_path(options.variant))

        verdict = strategy.prepare(lockfile)
        if not verdict.is_up_to_date:
            warn_all(verdict.warnings)
            if not options.allow_lockfile_updates:
                raise LockfileOutOfDateError(
                    "The lockfile is out of date.",
                    hint='Run "workspace-install update" to update it.',
                )

        # A failed install must never look like a valid earlier one.
        flag.clear()
        if strategy.uses_shared_lockfile:
            self._stage_temp_lockfile(lockfile)

        strategy.install(clean_install=options.clean_install)

        if (
            strategy.uses_shared_lockfile
            and options.allow_lockfile_updates
            and not options.is_filtered_install
        ):
            self._save_lockfile_and_repo_state()

        flag.create()
        try:
            strategy.post_install()
        except PostInstallError:
            flag.clear()
            raise

    def _stage_temp_lockfile(self, lockfile: PnpmLockfile | None) -> None:
        temp_lockfile = self.config.temp_lockfile_path
        if lockfile is None:
            if temp_lockfile.exists():
                temp_lockfile.unlink()
            return
        copy_file_if_changed(lockfile.path, temp_lockfile)

    def _save_lockfile_and_repo_state(self) -> None:
        config = self.config
        variant = self.options.variant
        temp_lockfile = config.temp_lockfile_path
        committed: Path = config.committed_lockfile_path(variant)
        if temp_lockfile.exists() and copy_file_if_changed(temp_lockfile, committed):
            eprint(f"Updated {committed}. Commit this file to source control.")

        common_versions = load_common_versions(config.common_versions_path(variant))
        repo_state = load_repo_state(config.repo_state_path(variant))
        if repo_state.refresh(common_versions.preferred_versions_hash()):
            eprint(f"Updated {repo_state.path}. Commit this file to source control.")


def run_install(config: WorkspaceConfiguration, options: InstallOptions) -> CommandResult:
    return InstallManager(config, options).run()
