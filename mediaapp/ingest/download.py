from __future__ import annotations

from dataclasses import dataclass

import httpx

from mediaapp.domain import BinaryDownloader, DownloadedBinary


@dataclass
class HttpBinaryDownloader(BinaryDownloader):
    """Fetch original assets over HTTP; status checking is left to the caller."""

    http_client: httpx.AsyncClient
    timeout_s: float = 30.0

    @classmethod
    def create(cls, *, timeout_s: float = 30.0) -> "HttpBinaryDownloader":
        return cls(http_client=httpx.AsyncClient(follow_redirects=True), timeout_s=timeout_s)

    async def fetch(self, url: str) -> DownloadedBinary:
        response = await self.http_client.get(url, timeout=self.timeout_s, follow_redirects=True)
        return DownloadedBinary(
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def close(self) -> None:
        await self.http_client.aclose()


__all__ = ["HttpBinaryDownloader"]
