from __future__ import annotations

import argparse
from datetime import datetime, timezone
from pathlib import Path

from build_cache.credential_cache import CredentialCacheError
from build_cache.provider import (
    BuildCacheConfigurationError,
    BuildCacheOptions,
    CloudBuildCacheProvider,
)
from workspace_install.config import InstallOptions, find_repo_root, load_workspace_configuration
from workspace_install.console import eprint, error
from workspace_install.errors import CommandResult, ConfigurationError
from workspace_install.manager import run_install


def build_parser() -> argparse.ArgumentParser:
    """Build the workspace-install CLI argument parser."""
    parser = argparse.ArgumentParser(prog="workspace-install")
    sub = parser.add_subparsers(dest="cmd", required=True)

    install_p = sub.add_parser(
        "install", help="Install dependencies from the checked-in lockfile without changing it."
    )
    update_p = sub.add_parser(
        "update", help="Install dependencies and update the checked-in lockfile when needed."
    )
    update_p.add_argument(
        "--full",
        action="store_true",
        help="Ignore the existing lockfile and resolve every dependency from scratch.",
    )

    for p in (install_p, update_p):
        p.add_argument("--repo-root", type=Path, help="Workspace root (defaults to auto-detect).")
        p.add_argument("--variant", help="Use an alternate set of lockfile/common-versions files.")
        p.add_argument(
            "--purge",
            action="store_true",
            help="Move the shared node_modules folder aside before installing.",
        )
        p.add_argument(
            "--recheck",
            action="store_true",
            help="Validate the lockfile even when file timestamps say nothing changed.",
        )
        p.add_argument(
            "--max-install-attempts",
            type=int,
            default=3,
            help="Total package manager attempts before giving up (default: 3).",
        )
        p.add_argument(
            "--to",
            dest="to_projects",
            action="append",
            default=[],
            help="Install only this project and its dependencies (repeatable).",
        )
        p.add_argument(
            "--from",
            dest="from_projects",
            action="append",
            default=[],
            help="Install this project, its dependencies and its dependents (repeatable).",
        )
        p.add_argument("--network-concurrency", type=int, help="Limit concurrent network requests.")
        p.add_argument("--debug", action="store_true", help="Ask the package manager for verbose logs.")

    creds_p = sub.add_parser(
        "update-cloud-credentials", help="Store or delete the build cache credential for this user."
    )
    creds_p.add_argument("--repo-root", type=Path, help="Workspace root (defaults to auto-detect).")
    group = creds_p.add_mutually_exclusive_group(required=True)
    group.add_argument("--credential", help="SAS token to store in the credential cache.")
    group.add_argument(
        "--delete", action="store_true", help="Remove the cached credential for this cache."
    )
    creds_p.add_argument(
        "--expires", help="ISO-8601 expiry for the stored credential (UTC when no offset is given)."
    )

    return parser


def filter_arguments(*, to_projects: list[str], from_projects: list[str]) -> tuple[str, ...]:
    args: list[str] = []
    for name in to_projects:
        args.extend(["--filter", f"{name}..."])
    for name in from_projects:
        args.extend(["--filter", f"...{name}..."])
    return tuple(args)


def _options_from_args(args: argparse.Namespace) -> InstallOptions:
    is_update = args.cmd == "update"
    return InstallOptions(
        variant=args.variant,
        full_upgrade=bool(getattr(args, "full", False)),
        allow_lockfile_updates=is_update,
        max_install_attempts=args.max_install_attempts,
        filter_arguments=filter_arguments(
            to_projects=args.to_projects, from_projects=args.from_projects
        ),
        clean_install=args.purge,
        recheck_lockfile=args.recheck,
        debug=args.debug,
        network_concurrency=args.network_concurrency,
    )


def _report(result: CommandResult) -> int:
    # Failures that already printed their details are not repeated here.
    if not result.ok and result.message and not result.already_reported:
        error(result.message)
    elif result.ok and result.message:
        eprint(result.message)
    return result.exit_code


def _cmd_install(args: argparse.Namespace) -> int:
    try:
        options = _options_from_args(args)
        repo_root = args.repo_root or find_repo_root()
        config = load_workspace_configuration(repo_root)
    except ConfigurationError as e:
        return _report(CommandResult.from_error(e))
    return _report(run_install(config, options))


def _parse_expires(text: str | None) -> datetime | None:
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ConfigurationError(f"Invalid --expires value: {text!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _cmd_update_cloud_credentials(args: argparse.Namespace) -> int:
    try:
        repo_root = args.repo_root or find_repo_root()
        config = load_workspace_configuration(repo_root)
        if not config.build_cache:
            raise ConfigurationError("No [build_cache] table is configured in workspace.toml.")
        try:
            options = BuildCacheOptions.from_mapping(config.build_cache)
        except BuildCacheConfigurationError as e:
            raise ConfigurationError(str(e)) from e
        expires = _parse_expires(args.expires)
    except ConfigurationError as e:
        return _report(CommandResult.from_error(e))

    provider = CloudBuildCacheProvider(options)
    try:
        if args.delete:
            provider.delete_cached_credentials()
            eprint(f"Deleted cached credentials for {provider.credential_cache_id}.")
        else:
            provider.update_cached_credential(args.credential, expires)
            eprint(f"Updated cached credentials for {provider.credential_cache_id}.")
    except CredentialCacheError as e:
        error(str(e))
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    """Run the CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd in {"install", "update"}:
        raise SystemExit(_cmd_install(args))
    if args.cmd == "update-cloud-credentials":
        raise SystemExit(_cmd_update_cloud_credentials(args))
    raise SystemExit(2)


if __name__ == "__main__":
    main()
