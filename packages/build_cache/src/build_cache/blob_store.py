from __future__ import annotations

from typing import Protocol
from urllib.parse import quote

import httpx

AZURE_BLOB_ENDPOINT_SUFFIXES: dict[str, str] = {
    "AzurePublicCloud": "blob.core.windows.net",
    "AzureChina": "blob.core.chinacloudapi.cn",
    "AzureGermany": "blob.core.cloudapi.de",
    "AzureGovernment": "blob.core.usgovcloudapi.net",
}

_STORAGE_API_VERSION = "2021-08-06"


class StorageRequestError(RuntimeError):
    """A storage call failed; ``status_code`` is None when no response arrived."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class BlobStore(Protocol):
    def exists(self, blob_name: str) -> bool: ...

    def download(self, blob_name: str) -> bytes: ...

    def upload(self, blob_name: str, data: bytes) -> None: ...


def storage_account_url(account_name: str, azure_environment: str = "AzurePublicCloud") -> str:
    suffix = AZURE_BLOB_ENDPOINT_SUFFIXES[azure_environment]
    return f"https://{account_name}.{suffix}/"


class AzureBlobStore:
    """
    Minimal Azure Blob Storage client over the REST API.

    ``sas_token`` is appended to every request; without it the container must allow anonymous
    reads. Uploads use ``If-None-Match: *`` so a concurrent writer surfaces as HTTP 409.
    """

    def __init__(
        self,
        *,
        account_url: str,
        container_name: str,
        sas_token: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.account_url = account_url.rstrip("/") + "/"
        self.container_name = container_name
        self._sas_token = sas_token.lstrip("?") if sas_token else None
        self._client = httpx.Client(
            headers={"x-ms-version": _STORAGE_API_VERSION},
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def blob_url(self, blob_name: str) -> str:
        url = f"{self.account_url}{quote(self.container_name)}/{quote(blob_name)}"
        if self._sas_token:
            url = f"{url}?{self._sas_token}"
        return url

    def exists(self, blob_name: str) -> bool:
        response = self._send("HEAD", blob_name)
        if response.status_code == 404:
            return False
        _raise_for_status(response)
        return True

    def download(self, blob_name: str) -> bytes:
        response = self._send("GET", blob_name)
        _raise_for_status(response)
        return response.content

    def upload(self, blob_name: str, data: bytes) -> None:
        response = self._send(
            "PUT",
            blob_name,
            content=data,
            headers={
                "x-ms-blob-type": "BlockBlob",
                "If-None-Match": "*",
                "Content-Type": "application/octet-stream",
            },
        )
        _raise_for_status(response)

    def _send(
        self,
        method: str,
        blob_name: str,
        *,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return self._client.request(
                method, self.blob_url(blob_name), content=content, headers=headers
            )
        except httpx.RequestError as e:
            raise StorageRequestError(f"{type(e).__name__}: {e}") from e


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    error_code = response.headers.get("x-ms-error-code")
    message = f"{response.status_code} {response.reason_phrase}".strip()
    raise StorageRequestError(message, status_code=response.status_code, error_code=error_code)
