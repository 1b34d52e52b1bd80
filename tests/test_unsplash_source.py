from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from mediaapp.ingest.download import HttpBinaryDownloader
from mediaapp.ingest.unsplash import UnsplashPhotoSource, map_unsplash_photo

PHOTO_PAYLOAD = {
    "id": "Dwu85P9SOIk",
    "created_at": "2016-05-03T11:00:28-04:00",
    "width": 2448,
    "height": 3264,
    "likes": 24,
    "views": 1200,
    "downloads": 345,
    "description": None,
    "alt_description": "a man drinking a coffee",
    "user": {"name": "Joe Example"},
    "urls": {"raw": "https://images.unsplash.com/raw", "full": "https://images.unsplash.com/full"},
}


def make_source(handler) -> UnsplashPhotoSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return UnsplashPhotoSource(access_key="test-key", base_url="https://api.unsplash.test/", http_client=client)


def test_mapping_falls_back_to_alt_description():
    photo = map_unsplash_photo(PHOTO_PAYLOAD)

    assert photo.external_id == "Dwu85P9SOIk"
    assert photo.title == photo.description == "a man drinking a coffee"
    assert photo.author_name == "Joe Example"
    assert photo.source_url == "https://images.unsplash.com/full"
    assert (photo.width, photo.height) == (2448, 3264)
    assert (photo.likes_count, photo.views_count, photo.downloads_count) == (24, 1200, 345)
    assert photo.uploaded_at == datetime(2016, 5, 3, 15, 0, 28, tzinfo=timezone.utc)
    assert photo.blob_url == ""
    assert map_unsplash_photo(PHOTO_PAYLOAD).id != photo.id


def test_fetch_by_id_sends_client_id_and_maps_response():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PHOTO_PAYLOAD)

    photo = asyncio.run(make_source(handler).fetch_by_id("Dwu85P9SOIk"))

    assert photo is not None and photo.external_id == "Dwu85P9SOIk"
    assert requests[0].url == "https://api.unsplash.test/photos/Dwu85P9SOIk"
    assert requests[0].headers["Authorization"] == "Client-ID test-key"


def test_fetch_by_id_returns_none_on_404():
    source = make_source(lambda request: httpx.Response(404, json={"errors": ["Couldn't find Photo"]}))

    assert asyncio.run(source.fetch_by_id("missing")) is None


def test_fetch_by_id_raises_on_other_errors():
    source = make_source(lambda request: httpx.Response(401, json={"errors": ["OAuth error"]}))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(source.fetch_by_id("abc"))


def test_search_passes_paging_and_reads_results():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(200, json={"total": 1, "total_pages": 1, "results": [PHOTO_PAYLOAD]})

    photos = asyncio.run(make_source(handler).search("coffee", 2, 5))

    assert [photo.external_id for photo in photos] == ["Dwu85P9SOIk"]
    assert seen == {"path": "/search/photos", "query": "coffee", "page": "2", "per_page": "5"}


def test_search_with_no_results_returns_empty_list():
    source = make_source(lambda request: httpx.Response(200, json={"total": 0, "results": []}))

    assert asyncio.run(source.search("nothing", 1, 3)) == []


def test_list_new_reads_editorial_feed():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/photos"
        return httpx.Response(200, json=[PHOTO_PAYLOAD, dict(PHOTO_PAYLOAD, id="other")])

    photos = asyncio.run(make_source(handler).list_new(1, 2))

    assert [photo.external_id for photo in photos] == ["Dwu85P9SOIk", "other"]


def test_downloader_reports_status_body_and_content_type():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/missing":
            return httpx.Response(404)
        return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})

    downloader = HttpBinaryDownloader(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    async def scenario():
        return (
            await downloader.fetch("https://images.example.com/photo.jpg"),
            await downloader.fetch("https://images.example.com/missing"),
        )

    ok, missing = asyncio.run(scenario())

    assert (ok.status_code, ok.content, ok.content_type) == (200, b"\xff\xd8jpeg", "image/jpeg")
    assert missing.status_code == 404
