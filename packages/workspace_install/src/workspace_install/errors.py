from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


class WorkspaceInstallError(RuntimeError):
    """
    Base class for failures that stop an install run.

    Parameters
    ----------
    message:
        Human-readable description of the failure.
    code:
        Stable machine-readable identifier.
    hint:
        Optional remediation text appended when the error is reported.
    already_reported:
        True when the failure details were already written to the console, so the
        top-level dispatcher must not print them a second time.
    """

    default_code = "install_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        hint: str | None = None,
        already_reported: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.hint = hint
        self.already_reported = already_reported

    def render(self) -> str:
        text = str(self)
        if self.hint:
            text = f"{text}\n{self.hint}"
        return text


class ConfigurationError(WorkspaceInstallError):
    """The user must change an input before running again. Never retried."""

    default_code = "configuration_error"


class UnsatisfiableLocalVersion(ConfigurationError):
    default_code = "unsatisfiable_local_version"

    def __init__(self, *, project_name: str, dependency_name: str, version_text: str) -> None:
        super().__init__(
            f'"{project_name}" depends on package "{dependency_name}" ({version_text}) which exists '
            "within the workspace but cannot be fulfilled with the specified version range. Either "
            "specify a valid version range, or add the package as a cyclic dependency.",
        )
        self.project_name = project_name
        self.dependency_name = dependency_name
        self.version_text = version_text


class LockfileMutationNotAuthorized(ConfigurationError):
    default_code = "lockfile_mutation_not_authorized"

    def __init__(self, *, project_name: str, dependency_name: str, version_text: str) -> None:
        super().__init__(
            f'"{project_name}" depends on package "{dependency_name}" ({version_text}) which exists '
            'within the workspace. Run "workspace-install update" to update workspace references '
            "for this package.",
        )
        self.project_name = project_name
        self.dependency_name = dependency_name
        self.version_text = version_text


class LockfileOutOfDateError(ConfigurationError):
    default_code = "lockfile_out_of_date"


class TransientInstallError(WorkspaceInstallError):
    """The package manager exited with a nonzero code on every attempt."""

    default_code = "install_failed"

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        attempts: int,
        hint: str | None = None,
        already_reported: bool = False,
    ) -> None:
        super().__init__(message, hint=hint, already_reported=already_reported)
        self.returncode = returncode
        self.attempts = attempts


class PostInstallError(WorkspaceInstallError):
    default_code = "post_install_failed"

    def __init__(self, message: str, *, failed_projects: Sequence[str]) -> None:
        super().__init__(message)
        self.failed_projects = tuple(failed_projects)


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    message: str | None = None
    already_reported: bool = False
    code: str | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @classmethod
    def success(cls, message: str | None = None) -> CommandResult:
        return cls(ok=True, message=message)

    @classmethod
    def from_error(cls, error: WorkspaceInstallError) -> CommandResult:
        return cls(
            ok=False,
            message=error.render(),
            already_reported=error.already_reported,
            code=error.code,
        )
