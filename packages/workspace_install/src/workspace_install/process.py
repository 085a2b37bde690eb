from __future__ import annotations

import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path

from workspace_install.console import eprint
from workspace_install.errors import ConfigurationError, TransientInstallError


def _run(
    argv: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    eprint(f"+ ({cwd}) {' '.join(argv)}")
    try:
        # Output streams straight to the console; no timeout is applied.
        return subprocess.run(
            argv,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"Command not found: {Path(argv[0]).name!r}.",
            hint="Install the package manager or set [package_manager].executable in workspace.toml.",
        ) from exc
    except OSError as exc:
        raise ConfigurationError(f"Failed to execute {argv[0]!r}: {exc}") from exc


def execute_command_with_retry(
    argv: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None,
    max_attempts: int,
    on_retry: Callable[[], None] | None = None,
) -> int:
    """
    Run ``argv`` until it exits with 0 or ``max_attempts`` is used up.

    ``on_retry`` runs between attempts (never after the last one). Returns the attempt
    number that succeeded.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")

    attempt = 1
    while True:
        cp = _run(argv, cwd=cwd, env=env)
        if cp.returncode == 0:
            return attempt
        if attempt >= max_attempts:
            raise TransientInstallError(
                f'"{" ".join(argv)}" failed with exit code {cp.returncode} after {attempt} '
                f"attempt{'s' if attempt != 1 else ''}.",
                returncode=cp.returncode,
                attempts=attempt,
            )
        eprint(
            f"WARNING: {Path(argv[0]).name} exited with code {cp.returncode} "
            f"(attempt {attempt} of {max_attempts}). Retrying."
        )
        if on_retry is not None:
            on_retry()
        attempt += 1
