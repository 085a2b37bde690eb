from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from pathlib import Path

from workspace_install import process
from workspace_install.config import InstallOptions, WorkspaceConfiguration
from workspace_install.console import eprint
from workspace_install.errors import TransientInstallError
from workspace_install.fsutil import Recycler, create_folder_with_retry

RecoveryAction = Callable[[], None]


class InstallState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    INVOKING = "invoking"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def push_common_args(args: list[str], config: WorkspaceConfiguration, options: InstallOptions) -> None:
    pm = config.package_manager
    if pm.name == "pnpm":
        if pm.uses_local_store:
            args.extend(["--store", str(config.store_path)])
        if pm.strict_peer_dependencies:
            args.append("--strict-peer-dependencies")
    if options.network_concurrency is not None:
        args.extend(["--network-concurrency", str(options.network_concurrency)])
    if options.debug:
        args.extend(["--loglevel", "debug"])


def package_manager_environment(
    config: WorkspaceConfiguration, base_env: Mapping[str, str] | None = None
) -> dict[str, str]:
    env = dict(os.environ if base_env is None else base_env)
    if config.package_manager.uses_local_store:
        # Keep package manager caches next to the local store instead of the user's home.
        env.setdefault("XDG_CACHE_HOME", str(config.temp_folder / "xdg_cache"))
        env.setdefault("XDG_STATE_HOME", str(config.temp_folder / "xdg_state"))
    return env


def recovery_action_for(
    config: WorkspaceConfiguration, recycler: Recycler, output_folder: Path
) -> RecoveryAction | None:
    if config.package_manager.name != "pnpm":
        return None

    def _recycle_node_modules() -> None:
        eprint(f'WARNING: Deleting the "{output_folder.name}" folder before retrying.')
        recycler.move_folder(output_folder)
        # The store stays put so already-downloaded packages are not fetched again.
        create_folder_with_retry(output_folder)

    return _recycle_node_modules


class InstallExecutor:
    """
    Runs the package manager against the shared dependency-output folder.

    Not safe to run twice concurrently on the same folder; one run owns it.
    """

    def __init__(
        self,
        *,
        output_folder: Path,
        project_output_folders: Sequence[Path],
        recycler: Recycler,
        max_attempts: int,
        recovery_action: RecoveryAction | None = None,
        local_store_path: Path | None = None,
    ) -> None:
        self.output_folder = output_folder
        self.project_output_folders = tuple(project_output_folders)
        self.recycler = recycler
        self.max_attempts = max_attempts
        self.recovery_action = recovery_action
        self.local_store_path = local_store_path
        self.state = InstallState.IDLE
        self.recovery_count = 0

    def prepare(self, *, clean_install: bool) -> None:
        self.state = InstallState.PREPARING
        if clean_install and self.output_folder.exists():
            eprint(f"Deleting files from {self.output_folder}")
            self.recycler.move_folder(self.output_folder)
            create_folder_with_retry(self.output_folder)

    def _on_retry(self) -> None:
        self.state = InstallState.RETRYING
        self.recovery_count += 1
        if self.recovery_action is not None:
            self.recovery_action()
        self.state = InstallState.INVOKING

    def run(
        self,
        argv: list[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None,
        clean_install: bool = False,
    ) -> int:
        self.prepare(clean_install=clean_install)
        self.state = InstallState.INVOKING
        try:
            attempt = process.execute_command_with_retry(
                argv,
                cwd=cwd,
                env=env,
                max_attempts=self.max_attempts,
                on_retry=self._on_retry,
            )
        except TransientInstallError as e:
            self.state = InstallState.FAILED
            hint = "Review the package manager output above."
            if self.local_store_path is not None and self.local_store_path.exists():
                # The store may be corrupted beyond repair; start it afresh on the next run.
                eprint(f'WARNING: Deleting the "{self.local_store_path.name}" folder')
                self.recycler.move_folder(self.local_store_path)
                hint = (
                    "Review the package manager output above; the store was recycled, so the "
                    "install will be retried from scratch on the next run."
                )
            raise TransientInstallError(
                str(e),
                returncode=e.returncode,
                attempts=e.attempts,
                hint=hint,
            ) from e

        # Later skip checks read these folders' timestamps, so they must exist even for
        # projects without dependencies.
        for folder in (self.output_folder, *self.project_output_folders):
            folder.mkdir(parents=True, exist_ok=True)
        self.state = InstallState.SUCCEEDED
        return attempt
