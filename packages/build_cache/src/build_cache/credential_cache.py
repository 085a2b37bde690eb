from __future__ import annotations

import json
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

CREDENTIAL_CACHE_VERSION = 1
CREDENTIAL_CACHE_FILENAME = "credentials.json"


class CredentialCacheError(RuntimeError):
    pass


@dataclass(frozen=True)
class CredentialEntry:
    credential: str
    expires: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires is None:
            return False
        return self.expires < (now or datetime.now(timezone.utc))


def default_credential_cache_path() -> Path:
    return Path.home() / ".workspace-install" / CREDENTIAL_CACHE_FILENAME


def _parse_expires(value: Any, *, entry_id: str) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CredentialCacheError(f"Credential {entry_id!r} has a non-string 'expires' value.")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise CredentialCacheError(f"Credential {entry_id!r} has an invalid 'expires' value.") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_entries(path: Path) -> dict[str, CredentialEntry]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise CredentialCacheError(f"Credential cache is not valid JSON: {path}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("entries", {}), dict):
        raise CredentialCacheError(f"Credential cache has an unexpected shape: {path}")

    entries: dict[str, CredentialEntry] = {}
    for entry_id, item in raw.get("entries", {}).items():
        if not isinstance(item, dict) or not isinstance(item.get("credential"), str):
            raise CredentialCacheError(f"Credential {entry_id!r} is malformed in {path}")
        entries[str(entry_id)] = CredentialEntry(
            credential=item["credential"],
            expires=_parse_expires(item.get("expires"), entry_id=str(entry_id)),
        )
    return entries


class CredentialCache:
    """
    Opaque credentials keyed by id, stored as a JSON file in the user's home folder.

    Read-only instances reject edits. Editing instances hold an OS-level lock on a file next
    to the cache for their lifetime so concurrent writers cannot drop each other's entries.
    The lock is released by the operating system if the holder dies.
    """

    def __init__(self, path: Path, *, supports_editing: bool) -> None:
        self.path = path
        self.supports_editing = supports_editing
        self._entries = _load_entries(path)
        self._modified = False

    @property
    def is_modified(self) -> bool:
        return self._modified

    @classmethod
    @contextmanager
    def using(
        cls,
        *,
        supports_editing: bool,
        path: Path | None = None,
        lock_timeout_seconds: float = 30.0,
    ) -> Iterator[CredentialCache]:
        cache_path = path or default_credential_cache_path()
        if not supports_editing:
            yield cls(cache_path, supports_editing=False)
            return

        lock_path = cache_path.with_name(cache_path.name + ".lock")
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(lock_path), timeout=lock_timeout_seconds)
        try:
            lock.acquire()
        except Timeout:
            raise CredentialCacheError(
                f"Timed out waiting for the credential cache lock: {lock_path}"
            ) from None
        try:
            yield cls(cache_path, supports_editing=True)
        finally:
            lock.release()

    def try_get(self, entry_id: str) -> CredentialEntry | None:
        return self._entries.get(entry_id)

    def set(self, entry_id: str, credential: str, expires: datetime | None = None) -> None:
        self._require_editing()
        entry = CredentialEntry(credential=credential, expires=expires)
        if self._entries.get(entry_id) != entry:
            self._entries[entry_id] = entry
            self._modified = True

    def delete(self, entry_id: str) -> None:
        self._require_editing()
        if self._entries.pop(entry_id, None) is not None:
            self._modified = True

    def trim_expired(self, now: datetime | None = None) -> list[str]:
        self._require_editing()
        expired = [k for k, v in self._entries.items() if v.is_expired(now)]
        for entry_id in expired:
            del self._entries[entry_id]
        if expired:
            self._modified = True
        return expired

    def save_if_modified(self) -> bool:
        self._require_editing()
        if not self._modified:
            return False

        payload = {
            "version": CREDENTIAL_CACHE_VERSION,
            "entries": {
                entry_id: {
                    "credential": entry.credential,
                    "expires": entry.expires.isoformat() if entry.expires else None,
                }
                for entry_id, entry in sorted(self._entries.items())
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, self.path)
        self._modified = False
        return True

    def _require_editing(self) -> None:
        if not self.supports_editing:
            raise CredentialCacheError(
                "This credential cache was opened read-only; open it with supports_editing=True."
            )

