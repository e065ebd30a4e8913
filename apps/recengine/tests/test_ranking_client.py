# apps/recengine/tests/test_ranking_client.py
import json

import httpx
import pytest

from errors import UpstreamUnavailable
from ranking_client import RankingClient


def _client(handler):
    return RankingClient(base_url="http://ranking.test", timeout=1, transport=httpx.MockTransport(handler))


def test_recommend_posts_request_and_returns_ids():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"postIds": [5, 3, 9]})

    ids = _client(handler).recommend(12, content_type="trailers", page=2, page_size=10)

    assert ids == [5, 3, 9]
    assert seen["path"] == "/recommendations"
    assert seen["body"] == {"userId": 12, "contentType": "trailers", "page": 2, "pageSize": 10}


def test_empty_answer():
    ids = _client(lambda request: httpx.Response(200, json={"postIds": []})).recommend(1)
    assert ids == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"error": "busy"}),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"postIds": ["x"]}),
    ],
)
def test_bad_responses_raise_upstream_unavailable(response):
    with pytest.raises(UpstreamUnavailable):
        _client(lambda request: response).recommend(1)


def test_transport_error_raises_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailable):
        _client(handler).recommend(1)


def test_healthcheck():
    assert _client(lambda request: httpx.Response(200, json={"ok": True})).healthcheck()
    assert not _client(lambda request: httpx.Response(500)).healthcheck()
