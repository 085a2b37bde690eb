from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from workspace_install.fsutil import write_text_if_changed
from workspace_install.manifest import render_json

_CONFLICT_MARKER_RE = re.compile(r"^(<{7}|={7}|>{7})( |$)", re.MULTILINE)


@dataclass(frozen=True)
class RepoStateRecord:
    """
    Preferred-versions fingerprint that produced the checked-in lockfile.

    A missing file is valid and carries no fingerprint. A file that does not parse, has the
    wrong shape, or still contains merge conflict markers is invalid.
    """

    path: Path
    preferred_versions_hash: str | None
    is_valid: bool

    def refresh(self, preferred_versions_hash: str) -> bool:
        """Persist ``preferred_versions_hash``; returns True when the file changed."""

        payload = {"preferredVersionsHash": preferred_versions_hash}
        return write_text_if_changed(self.path, render_json(payload))


def load_repo_state(path: Path) -> RepoStateRecord:
    if not path.exists():
        return RepoStateRecord(path=path, preferred_versions_hash=None, is_valid=True)

    text = path.read_text(encoding="utf-8")
    if _CONFLICT_MARKER_RE.search(text):
        return RepoStateRecord(path=path, preferred_versions_hash=None, is_valid=False)

    try:
        raw = json.loads(text)
    except json.JSONDecodeError:
        return RepoStateRecord(path=path, preferred_versions_hash=None, is_valid=False)

    if not isinstance(raw, dict):
        return RepoStateRecord(path=path, preferred_versions_hash=None, is_valid=False)

    value = raw.get("preferredVersionsHash")
    if value is not None and not isinstance(value, str):
        return RepoStateRecord(path=path, preferred_versions_hash=None, is_valid=False)
    return RepoStateRecord(path=path, preferred_versions_hash=value, is_valid=True)
