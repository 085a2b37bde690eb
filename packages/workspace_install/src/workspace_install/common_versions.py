from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from hashlib import sha256
from pathlib import Path

from workspace_install.errors import ConfigurationError


@dataclass(frozen=True)
class CommonVersions:
    """Workspace-wide preferred version ranges, applied during resolution."""

    path: Path
    preferred_versions: dict[str, str] = field(default_factory=dict)
    allowed_alternative_versions: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def preferred_versions_hash(self) -> str:
        h = sha256()
        for name in sorted(self.preferred_versions):
            h.update(f"{name}@{self.preferred_versions[name]}\n".encode("utf-8"))
        return h.hexdigest()


def load_common_versions(path: Path) -> CommonVersions:
    if not path.exists():
        return CommonVersions(path=path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e

    unknown = set(data) - {"preferred_versions", "allowed_alternative_versions"}
    if unknown:
        raise ConfigurationError(f"Unknown keys in {path}: {', '.join(sorted(unknown))}.")

    preferred = data.get("preferred_versions", {})
    if not isinstance(preferred, dict) or not all(isinstance(v, str) for v in preferred.values()):
        raise ConfigurationError(f"Expected [preferred_versions] to map names to strings in {path}.")

    alternatives_raw = data.get("allowed_alternative_versions", {})
    if not isinstance(alternatives_raw, dict):
        raise ConfigurationError(f"Expected [allowed_alternative_versions] table in {path}.")
    alternatives: dict[str, tuple[str, ...]] = {}
    for name, versions in alternatives_raw.items():
        if not isinstance(versions, list) or not all(isinstance(v, str) for v in versions):
            raise ConfigurationError(
                f"Expected list of strings for allowed_alternative_versions.{name} in {path}."
            )
        alternatives[name] = tuple(versions)

    return CommonVersions(
        path=path,
        preferred_versions=dict(preferred),
        allowed_alternative_versions=alternatives,
    )
