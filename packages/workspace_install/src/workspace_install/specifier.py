from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import nodesemver

WORKSPACE_PREFIX = "workspace:"

# Characters left untouched by JavaScript's encodeURIComponent; npm rejects tags outside this set.
_DIST_TAG_RE = re.compile(r"^[A-Za-z0-9\-_.!~*'()]+$")


class SpecifierKind(str, Enum):
    EXACT_VERSION = "version"
    RANGE = "range"
    TAG = "tag"
    WORKSPACE = "workspace"
    OTHER = "other"


@dataclass(frozen=True)
class DependencySpecifier:
    name: str
    version_text: str
    kind: SpecifierKind
    version_specifier: str

    @property
    def is_local_candidate(self) -> bool:
        return self.kind in (SpecifierKind.EXACT_VERSION, SpecifierKind.RANGE)


def is_exact_version(text: str) -> bool:
    try:
        nodesemver.make_semver(text, False)
    except (ValueError, TypeError):
        return False
    return True


def is_valid_range(text: str) -> bool:
    try:
        nodesemver.make_range(text, False)
    except (ValueError, TypeError):
        return False
    return True


def version_satisfies(version: str, range_text: str) -> bool:
    try:
        return bool(nodesemver.satisfies(version, range_text, False))
    except (ValueError, TypeError):
        return False


def classify(name: str, version_text: str) -> DependencySpecifier:
    """
    Classify a raw ``(name, version_text)`` pair from a manifest.

    Unrecognized input degrades to ``SpecifierKind.OTHER``; this never raises, so an exotic
    but package-manager-legal specifier cannot block an install.
    """

    text = version_text.strip()

    if text.startswith(WORKSPACE_PREFIX):
        embedded = text[len(WORKSPACE_PREFIX) :].strip() or "*"
        return DependencySpecifier(name, version_text, SpecifierKind.WORKSPACE, embedded)

    if text and is_exact_version(text):
        return DependencySpecifier(name, version_text, SpecifierKind.EXACT_VERSION, text)

    if _looks_like_range(text) and is_valid_range(text):
        return DependencySpecifier(name, version_text, SpecifierKind.RANGE, text or "*")

    if _DIST_TAG_RE.match(text) and not text.startswith("."):
        return DependencySpecifier(name, version_text, SpecifierKind.TAG, text)

    return DependencySpecifier(name, version_text, SpecifierKind.OTHER, text)


def _looks_like_range(text: str) -> bool:
    # Protocols (file:, git+ssh:, npm:, link:) and paths are never ranges.
    return ":" not in text and "/" not in text and "\\" not in text


def workspace_reference_for(specifier: DependencySpecifier) -> str:
    """Keep a declared range verbatim; a single pinned version becomes ``workspace:*``."""

    spec = specifier.version_specifier
    if is_valid_range(spec) and not is_exact_version(spec):
        return f"{WORKSPACE_PREFIX}{spec}"
    return f"{WORKSPACE_PREFIX}*"
