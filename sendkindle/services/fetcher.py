from __future__ import annotations

import logging
from urllib.parse import urlsplit

import httpx

LOGGER = logging.getLogger("sendkindle.fetcher")

DEFAULT_PROXY_BASE_URL = "https://r.jina.ai"
HTML_ACCEPT = "text/html,application/xhtml+xml"


class FetchError(RuntimeError):
    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PageFetcher:
    """Async page retrieval: direct GET, or through a text-extraction proxy.

    Timeouts are hard budgets; httpx cancels the in-flight request when one expires
    and the failure surfaces as `FetchError`, same as any network error.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        proxy_base_url: str = DEFAULT_PROXY_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._user_agent = user_agent
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._client = client if client is not None else httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None

    async def fetch(self, url: str, *, timeout_seconds: float) -> str:
        try:
            response = await self._client.get(
                url,
                headers={"User-Agent": self._user_agent, "Accept": HTML_ACCEPT},
                timeout=httpx.Timeout(timeout_seconds),
            )
        except httpx.TimeoutException as exc:
            LOGGER.info("fetch timed out url=%s timeout_seconds=%s", url, timeout_seconds)
            raise FetchError(f"Fetch timed out after {timeout_seconds}s", url=url) from exc
        except httpx.HTTPError as exc:
            LOGGER.info("fetch failed url=%s error=%s", url, type(exc).__name__)
            raise FetchError(f"Fetch failed: {type(exc).__name__}", url=url) from exc

        if not response.is_success:
            LOGGER.info("fetch rejected url=%s status=%s", url, response.status_code)
            raise FetchError(
                f"Failed to fetch: {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response.text

    async def fetch_via_proxy(self, url: str, *, timeout_seconds: float) -> str:
        return await self.fetch(self.build_proxy_url(url), timeout_seconds=timeout_seconds)

    def build_proxy_url(self, url: str) -> str:
        """Proxy address for `url`; userinfo never leaves for the third-party proxy."""
        parsed = urlsplit(url)
        scheme = "https" if parsed.scheme.lower() == "https" else "http"
        host = parsed.hostname or ""
        if ":" in host:
            host = f"[{host}]"
        if parsed.port is not None:
            host = f"{host}:{parsed.port}"
        query = f"?{parsed.query}" if parsed.query else ""
        return f"{self._proxy_base_url}/{scheme}://{host}{parsed.path}{query}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
