from build_cache.blob_store import AzureBlobStore, BlobStore, StorageRequestError
from build_cache.credential_cache import CredentialCache, CredentialCacheError, CredentialEntry
from build_cache.provider import (
    BuildCacheConfigurationError,
    BuildCacheCredentialError,
    BuildCacheOptions,
    CacheError,
    CacheErrorKind,
    CloudBuildCacheProvider,
    classify_storage_error,
)

__all__ = [
    "AzureBlobStore",
    "BlobStore",
    "BuildCacheConfigurationError",
    "BuildCacheCredentialError",
    "BuildCacheOptions",
    "CacheError",
    "CacheErrorKind",
    "CloudBuildCacheProvider",
    "CredentialCache",
    "CredentialCacheError",
    "CredentialEntry",
    "StorageRequestError",
    "classify_storage_error",
]
