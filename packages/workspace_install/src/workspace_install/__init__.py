from workspace_install.config import (
    InstallOptions,
    Project,
    WorkspaceConfiguration,
    find_repo_root,
    load_workspace_configuration,
)
from workspace_install.errors import (
    CommandResult,
    ConfigurationError,
    LockfileMutationNotAuthorized,
    LockfileOutOfDateError,
    PostInstallError,
    TransientInstallError,
    UnsatisfiableLocalVersion,
    WorkspaceInstallError,
)
from workspace_install.manager import InstallManager, run_install
from workspace_install.specifier import DependencySpecifier, SpecifierKind, classify

__all__ = [
    "CommandResult",
    "ConfigurationError",
    "DependencySpecifier",
    "InstallManager",
    "InstallOptions",
    "LockfileMutationNotAuthorized",
    "LockfileOutOfDateError",
    "PostInstallError",
    "Project",
    "SpecifierKind",
    "TransientInstallError",
    "UnsatisfiableLocalVersion",
    "WorkspaceConfiguration",
    "WorkspaceInstallError",
    "classify",
    "find_repo_root",
    "load_workspace_configuration",
    "run_install",
]
