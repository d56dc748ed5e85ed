"""
DocumentStoreClient against a patched requests session. No network.
"""
import pytest
import requests

from apps.pointcard.services import store_client as store_client_module
from apps.pointcard.services.errors import NotFound, UpstreamUnavailable
from apps.pointcard.services.store_client import DocumentStoreClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text or ("" if payload is None else str(payload))
        self.content = b"" if payload is None else b"{}"

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def request(self, method, url, json=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "timeout": timeout})
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(store_client_module.time, "sleep", lambda s: sleeps.append(s))
    return sleeps


def _client(responses, **kwargs):
    session = FakeSession(responses)
    kwargs.setdefault("max_retries", 3)
    client = DocumentStoreClient("secret-key", base_url="https://store.test/v1", session=session, **kwargs)
    return client, session


def test_requires_api_key():
    with pytest.raises(ValueError):
        DocumentStoreClient("")


def test_headers_are_pinned():
    _, session = _client([])
    assert session.headers["Authorization"] == "Bearer secret-key"
    assert session.headers["Notion-Version"] == DocumentStoreClient.API_VERSION


def test_retrieve_collection_schema_maps_declared_types():
    client, session = _client(
        [FakeResponse(200, {"properties": {"name": {"type": "title"}, "current_points": {"type": "number"}}})]
    )
    assert client.retrieve_collection_schema("db1") == {"name": "title", "current_points": "number"}
    assert session.requests[0]["method"] == "GET"
    assert session.requests[0]["url"] == "https://store.test/v1/databases/db1"


def test_retries_server_errors_then_succeeds(no_sleep):
    client, session = _client([FakeResponse(502, text="bad gateway"), FakeResponse(200, {"id": "p1"})])
    assert client.retrieve_record("p1") == {"id": "p1"}
    assert len(session.requests) == 2
    assert len(no_sleep) == 1


def test_rate_limit_honours_retry_after(no_sleep):
    client, _ = _client([FakeResponse(429, headers={"Retry-After": "2"}), FakeResponse(200, {"id": "p1"})])
    client.retrieve_record("p1")
    assert no_sleep == [2.0]


def test_transport_errors_exhaust_into_upstream_unavailable():
    client, session = _client([requests.ConnectionError("down")] * 3)
    with pytest.raises(UpstreamUnavailable) as exc:
        client.retrieve_record("p1")
    assert len(session.requests) == 3
    assert exc.value.status_code == 503


def test_not_found_is_not_retried():
    client, session = _client([FakeResponse(404, text="missing")])
    with pytest.raises(NotFound):
        client.retrieve_record("gone")
    assert len(session.requests) == 1


def test_client_error_fails_fast():
    client, session = _client([FakeResponse(400, {"message": "bad filter"}, text="bad filter")])
    with pytest.raises(UpstreamUnavailable) as exc:
        client.query_collection("db1", filter={"property": "x"})
    assert exc.value.detail["status"] == 400
    assert len(session.requests) == 1


def test_iter_collection_follows_cursor():
    client, session = _client(
        [
            FakeResponse(200, {"results": [{"id": "a"}, {"id": "b"}], "has_more": True, "next_cursor": "c2"}),
            FakeResponse(200, {"results": [{"id": "c"}], "has_more": False, "next_cursor": None}),
        ]
    )
    ids = [r["id"] for r in client.iter_collection("db1", page_size=2)]

    assert ids == ["a", "b", "c"]
    assert session.requests[0]["json"] == {"page_size": 2}
    assert session.requests[1]["json"] == {"page_size": 2, "start_cursor": "c2"}


def test_page_size_is_clamped():
    client, session = _client([FakeResponse(200, {"results": []})])
    client.query_collection("db1", page_size=500)
    assert session.requests[0]["json"]["page_size"] == 100


def test_create_update_archive_payloads():
    client, session = _client([FakeResponse(200, {"id": "new"}), FakeResponse(200, {}), FakeResponse(200, {})])

    assert client.create_record("db1", {"name": {"title": []}}) == "new"
    client.update_record("new", {"current_points": {"number": 1}})
    client.archive_record("new")

    create, update, archive = session.requests
    assert create["json"] == {"parent": {"database_id": "db1"}, "properties": {"name": {"title": []}}}
    assert (update["method"], update["url"]) == ("PATCH", "https://store.test/v1/pages/new")
    assert update["json"] == {"properties": {"current_points": {"number": 1}}}
    assert archive["json"] == {"archived": True}


def test_create_without_id_is_an_upstream_failure():
    client, _ = _client([FakeResponse(200, {})])
    with pytest.raises(UpstreamUnavailable):
        client.create_record("db1", {})


def test_context_manager_closes_session():
    client, session = _client([])
    with client:
        pass
    assert session.closed
