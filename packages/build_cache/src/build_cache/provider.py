from __future__ import annotations

import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from build_cache.blob_store import (
    AZURE_BLOB_ENDPOINT_SUFFIXES,
    AzureBlobStore,
    BlobStore,
    StorageRequestError,
    storage_account_url,
)
from build_cache.credential_cache import CredentialCache

WRITE_CREDENTIAL_ENV_VAR = "WORKSPACE_BUILD_CACHE_WRITE_CREDENTIAL"
UPDATE_CREDENTIALS_COMMAND = "workspace-install update-cloud-credentials"


def _eprint(*args: object) -> None:
    print(*args, file=sys.stderr, flush=True)


class BuildCacheConfigurationError(ValueError):
    pass


class BuildCacheCredentialError(RuntimeError):
    pass


class CacheErrorKind(str, Enum):
    NOT_PERMITTED = "not_permitted"
    AUTH_FAILED = "auth_failed"
    PERMISSION_MISMATCH = "permission_mismatch"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


_ERROR_CODE_KINDS: dict[str, CacheErrorKind] = {
    "PublicAccessNotPermitted": CacheErrorKind.NOT_PERMITTED,
    "AuthenticationFailed": CacheErrorKind.AUTH_FAILED,
    "AuthorizationPermissionMismatch": CacheErrorKind.PERMISSION_MISMATCH,
}


@dataclass(frozen=True)
class CacheError:
    kind: CacheErrorKind
    message: str
    status_code: int | None = None
    error_code: str | None = None

    def describe(self) -> str:
        pieces = [self.message, str(self.status_code or ""), self.error_code or ""]
        return " ".join(p for p in pieces if p)


def classify_storage_error(exc: StorageRequestError) -> CacheError:
    """Translate a storage failure into the one error shape the provider reasons about."""

    if exc.status_code == 409:
        kind = CacheErrorKind.CONFLICT
    else:
        kind = _ERROR_CODE_KINDS.get(exc.error_code or "", CacheErrorKind.UNKNOWN)
    return CacheError(
        kind=kind,
        message=str(exc),
        status_code=exc.status_code,
        error_code=exc.error_code,
    )


def _read_hint(kind: CacheErrorKind) -> str | None:
    update = (
        f'Update the credentials by running "{UPDATE_CREDENTIALS_COMMAND}", '
        f"or provide a SAS in the {WRITE_CREDENTIAL_ENV_VAR} environment variable."
    )
    if kind is CacheErrorKind.NOT_PERMITTED:
        return "You need to configure Azure Storage SAS credentials to access the build cache.\n" + update
    if kind is CacheErrorKind.AUTH_FAILED:
        return "Your Azure Storage SAS credentials are not valid.\n" + update
    if kind is CacheErrorKind.PERMISSION_MISMATCH:
        return (
            "Your Azure Storage SAS credentials are valid, but do not have permission to read the "
            "build cache.\nMake sure the 'Storage Blob Data Reader' role is assigned to the "
            "appropriate users or groups on the storage account."
        )
    return None


@dataclass(frozen=True)
class BuildCacheOptions:
    storage_account_name: str
    storage_container_name: str
    azure_environment: str = "AzurePublicCloud"
    blob_prefix: str | None = None
    is_cache_write_allowed: bool = False

    def __post_init__(self) -> None:
        if self.azure_environment not in AZURE_BLOB_ENDPOINT_SUFFIXES:
            allowed = ", ".join(AZURE_BLOB_ENDPOINT_SUFFIXES)
            raise BuildCacheConfigurationError(
                f'The specified Azure environment ("{self.azure_environment}") is invalid. '
                f"If it is specified, it must be one of: {allowed}"
            )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BuildCacheOptions:
        allowed = {
            "storage_account_name",
            "storage_container_name",
            "azure_environment",
            "blob_prefix",
            "is_cache_write_allowed",
        }
        unknown = sorted(set(raw) - allowed)
        if unknown:
            raise BuildCacheConfigurationError(f"Unknown build cache keys: {', '.join(unknown)}")
        for key in ("storage_account_name", "storage_container_name"):
            if not isinstance(raw.get(key), str) or not raw[key].strip():
                raise BuildCacheConfigurationError(f"Build cache option {key!r} must be a string.")
        write_allowed = raw.get("is_cache_write_allowed", False)
        if not isinstance(write_allowed, bool):
            raise BuildCacheConfigurationError("'is_cache_write_allowed' must be a boolean.")
        return cls(
            storage_account_name=raw["storage_account_name"],
            storage_container_name=raw["storage_container_name"],
            azure_environment=raw.get("azure_environment", "AzurePublicCloud"),
            blob_prefix=raw.get("blob_prefix"),
            is_cache_write_allowed=write_allowed,
        )


StoreFactory = Callable[[str | None], BlobStore]


class CloudBuildCacheProvider:
    """
    Reads and writes build cache entries in an Azure Blob Storage container.

    Storage failures never fail the build: reads degrade to a miss and writes report False,
    each with one diagnostic line. Missing or expired credentials are configuration problems
    and do raise.
    """

    def __init__(
        self,
        options: BuildCacheOptions,
        *,
        env: Mapping[str, str] | None = None,
        credential_cache_path: Path | None = None,
        store_factory: StoreFactory | None = None,
        verbose: bool = False,
    ) -> None:
        environ = os.environ if env is None else env
        self.options = options
        self.verbose = verbose
        self._environment_write_credential = environ.get(WRITE_CREDENTIAL_ENV_VAR) or None
        self._credential_cache_path = credential_cache_path
        self._store_factory = store_factory or self._default_store
        self._store: BlobStore | None = None

    @property
    def is_cache_write_allowed(self) -> bool:
        return self.options.is_cache_write_allowed or bool(self._environment_write_credential)

    @property
    def credential_cache_id(self) -> str:
        parts = [
            "azure-blob-storage",
            self.options.azure_environment,
            self.options.storage_account_name,
            self.options.storage_container_name,
        ]
        if self.options.is_cache_write_allowed:
            parts.append("cacheWriteAllowed")
        return "|".join(parts)

    def blob_name_for(self, cache_id: str) -> str:
        if self.options.blob_prefix:
            return f"{self.options.blob_prefix}/{cache_id}"
        return cache_id

    def try_get(self, cache_id: str) -> bytes | None:
        store = self._get_store()
        blob_name = self.blob_name_for(cache_id)
        try:
            if not store.exists(blob_name):
                return None
            return store.download(blob_name)
        except StorageRequestError as e:
            error = classify_storage_error(e)
            message = "Error getting cache entry from Azure Storage: " + error.describe()
            hint = _read_hint(error.kind)
            _eprint(f"WARNING: {message}" + (f"\n\n{hint}" if hint else ""))
            return None

    def try_set(self, cache_id: str, data: bytes) -> bool:
        if not self.is_cache_write_allowed:
            _eprint(
                "ERROR: Writing to the Azure Blob Storage cache is not allowed in the current "
                "configuration."
            )
            return False

        store = self._get_store()
        blob_name = self.blob_name_for(cache_id)
        already_exists = False
        try:
            already_exists = store.exists(blob_name)
        except StorageRequestError as e:
            # A rotated or corrupted credential should not fail the build; the upload below
            # reports its own outcome.
            error = classify_storage_error(e)
            _eprint(
                "WARNING: Error checking if cache entry exists in Azure Storage: "
                + error.describe()
            )

        if already_exists:
            self._verbose("Build cache entry blob already exists.")
            return True

        try:
            store.upload(blob_name, data)
        except StorageRequestError as e:
            error = classify_storage_error(e)
            if error.kind is CacheErrorKind.CONFLICT:
                # Another builder wrote the same entry concurrently.
                self._verbose(
                    "Azure Storage returned status 409 (conflict). The cache entry has probably "
                    f'already been set by another builder. Code: "{error.error_code}".'
                )
                return True
            _eprint(f"WARNING: Error uploading cache entry to Azure Storage: {error.describe()}")
            return False
        return True

    def update_cached_credential(self, credential: str, expires: datetime | None = None) -> None:
        with CredentialCache.using(
            supports_editing=True, path=self._credential_cache_path
        ) as cache:
            cache.set(self.credential_cache_id, credential, expires)
            cache.save_if_modified()
        self._store = None

    def delete_cached_credentials(self) -> None:
        with CredentialCache.using(
            supports_editing=True, path=self._credential_cache_path
        ) as cache:
            cache.delete(self.credential_cache_id)
            cache.save_if_modified()
        self._store = None

    def _resolve_credential(self) -> str | None:
        if self._environment_write_credential:
            return self._environment_write_credential

        with CredentialCache.using(
            supports_editing=False, path=self._credential_cache_path
        ) as cache:
            entry = cache.try_get(self.credential_cache_id)
        if entry is None:
            return None
        if entry.is_expired():
            raise BuildCacheCredentialError(
                "Cached Azure Storage credentials have expired. Update the credentials by "
                f'running "{UPDATE_CREDENTIALS_COMMAND}".'
            )
        return entry.credential

    def _get_store(self) -> BlobStore:
        if self._store is not None:
            return self._store

        credential = self._resolve_credential()
        if credential is None and self.options.is_cache_write_allowed:
            raise BuildCacheCredentialError(
                "An Azure Storage SAS credential hasn't been provided, or has expired. Update the "
                f'credentials by running "{UPDATE_CREDENTIALS_COMMAND}", or provide a SAS in the '
                f"{WRITE_CREDENTIAL_ENV_VAR} environment variable."
            )
        # Without a credential and without configured writes, the container is assumed to
        # allow anonymous reads.
        self._store = self._store_factory(credential)
        return self._store

    def _default_store(self, sas_token: str | None) -> BlobStore:
        return AzureBlobStore(
            account_url=storage_account_url(
                self.options.storage_account_name, self.options.azure_environment
            ),
            container_name=self.options.storage_container_name,
            sas_token=sas_token,
        )

    def _verbose(self, message: str) -> None:
        if self.verbose:
            _eprint(message)
