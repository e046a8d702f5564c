"""Search provider adapters normalizing third-party payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Protocol, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from answerengine.errors import ConfigurationError, SourceUnavailableError
from answerengine.models import ImageResult, SearchResult, VideoResult

SearchKind = Literal["web", "images", "videos"]

FAVICON_URL = "https://www.google.com/s2/favicons?domain={host}"


@dataclass(frozen=True)
class SearchConfig:
    """Configuration shared by search providers."""

    result_count: int = 10
    media_count: int = 4
    timeout_seconds: float = 10.0


class SearchProvider(Protocol):
    """Protocol describing a web search backend."""

    name: str
    capabilities: frozenset[str]

    async def search(self, query: str) -> Sequence[SearchResult]:
        """Return normalized web results in provider order."""

    async def images(self, query: str) -> Sequence[ImageResult]:
        """Return normalized image results."""

    async def videos(self, query: str) -> Sequence[VideoResult]:
        """Return normalized video results."""


def favicon_for(link: str) -> str | None:
    try:
        host = httpx.URL(link).host
    except (httpx.InvalidURL, TypeError):
        return None
    return FAVICON_URL.format(host=host) if host else None


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _SerperOrganic(_Payload):
    title: str = ""
    link: str
    snippet: str = ""


class _SerperImage(_Payload):
    title: str = ""
    imageUrl: str
    link: str = ""


class _SerperVideo(_Payload):
    title: str = ""
    link: str
    imageUrl: str = ""
    duration: str | None = None


class _SerperSearchPayload(_Payload):
    organic: list[_SerperOrganic] = Field(default_factory=list)


class _SerperImagesPayload(_Payload):
    images: list[_SerperImage] = Field(default_factory=list)


class _SerperVideosPayload(_Payload):
    videos: list[_SerperVideo] = Field(default_factory=list)


class _BraveResult(_Payload):
    title: str = ""
    url: str
    description: str = ""


class _BraveWeb(_Payload):
    results: list[_BraveResult] = Field(default_factory=list)


class _BraveSearchPayload(_Payload):
    web: _BraveWeb = Field(default_factory=_BraveWeb)


class _HttpSearchProvider:
    """Shared HTTP plumbing: one request, status check, JSON decode, schema validation."""

    name = "http"
    capabilities: frozenset[str] = frozenset()

    def __init__(
        self,
        api_key: str | None,
        config: SearchConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._config = config or SearchConfig()
        self._client = client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        payload_model: type[BaseModel],
        headers: Mapping[str, str],
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> Any:
        if not self._api_key:
            raise ConfigurationError(f"{self.name} search API key is not configured")
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=headers, params=params, json=json)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds)) as client:
                    response = await client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as exc:
            raise SourceUnavailableError(f"{self.name} request failed: {exc}") from exc
        if response.status_code // 100 != 2:
            raise SourceUnavailableError(f"{self.name} returned HTTP {response.status_code}")
        try:
            return payload_model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SourceUnavailableError(f"{self.name} returned a malformed payload: {exc}") from exc

    async def images(self, query: str) -> Sequence[ImageResult]:
        return []

    async def videos(self, query: str) -> Sequence[VideoResult]:
        return []


class SerperSearchProvider(_HttpSearchProvider):
    """Google results through the Serper API (web, images, videos)."""

    name = "serper"
    capabilities = frozenset({"web", "images", "videos"})
    base_url = "https://google.serper.dev"

    def _headers(self) -> dict[str, str]:
        return {"X-API-KEY": self._api_key or "", "Content-Type": "application/json"}

    async def search(self, query: str) -> Sequence[SearchResult]:
        payload = await self._request(
            "POST",
            f"{self.base_url}/search",
            payload_model=_SerperSearchPayload,
            headers=self._headers(),
            json={"q": query, "num": self._config.result_count},
        )
        return [
            SearchResult(title=item.title, link=item.link, snippet=item.snippet, favicon=favicon_for(item.link))
            for item in payload.organic[: self._config.result_count]
        ]

    async def images(self, query: str) -> Sequence[ImageResult]:
        payload = await self._request(
            "POST",
            f"{self.base_url}/images",
            payload_model=_SerperImagesPayload,
            headers=self._headers(),
            json={"q": query, "num": self._config.media_count},
        )
        return [
            ImageResult(title=item.title, image_url=item.imageUrl, source_url=item.link)
            for item in payload.images[: self._config.media_count]
        ]

    async def videos(self, query: str) -> Sequence[VideoResult]:
        payload = await self._request(
            "POST",
            f"{self.base_url}/videos",
            payload_model=_SerperVideosPayload,
            headers=self._headers(),
            json={"q": query, "num": self._config.media_count},
        )
        return [
            VideoResult(title=item.title, link=item.link, thumbnail=item.imageUrl, duration=item.duration)
            for item in payload.videos[: self._config.media_count]
        ]


class BraveSearchProvider(_HttpSearchProvider):
    """Brave Search web results. Image and video search are not wired for Brave."""

    name = "brave"
    capabilities = frozenset({"web"})
    base_url = "https://api.search.brave.com/res/v1/web/search"

    async def search(self, query: str) -> Sequence[SearchResult]:
        payload = await self._request(
            "GET",
            self.base_url,
            payload_model=_BraveSearchPayload,
            headers={"X-Subscription-Token": self._api_key or "", "Accept": "application/json"},
            params={"q": query, "count": self._config.result_count},
        )
        return [
            SearchResult(title=item.title, link=item.url, snippet=item.description, favicon=favicon_for(item.url))
            for item in payload.web.results[: self._config.result_count]
        ]


class StaticSearchProvider:
    """Deterministic provider used for tests and offline environments."""

    name = "static"
    capabilities = frozenset({"web", "images", "videos"})

    def __init__(
        self,
        results: Sequence[SearchResult] = (),
        images: Sequence[ImageResult] = (),
        videos: Sequence[VideoResult] = (),
    ) -> None:
        self._results = tuple(results)
        self._images = tuple(images)
        self._videos = tuple(videos)

    async def search(self, query: str) -> Sequence[SearchResult]:
        return list(self._results)

    async def images(self, query: str) -> Sequence[ImageResult]:
        return list(self._images)

    async def videos(self, query: str) -> Sequence[VideoResult]:
        return list(self._videos)


def build_provider(
    name: str,
    *,
    config: SearchConfig,
    serper_api_key: str | None = None,
    brave_api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> SearchProvider:
    """Instantiate a provider by its configured name."""

    key = name.strip().lower()
    if key == "serper":
        return SerperSearchProvider(serper_api_key, config, client=client)
    if key == "brave":
        return BraveSearchProvider(brave_api_key, config, client=client)
    if key == "static":
        return StaticSearchProvider()
    raise ConfigurationError(f"Unknown search provider: {name}")
