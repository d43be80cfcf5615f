"""
Tests for HttpTransport against a stubbed requests session.
"""
import json

import pytest
import requests

from teampulse.errors import TransportError
from teampulse.transport import HttpTransport


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if body is not None:
            text = json.dumps(body)
        self.text = text or ""
        self.content = self.text.encode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.closed = False

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


def test_json_body_is_decoded():
    session = FakeSession(FakeResponse(body={"members": []}))
    transport = HttpTransport(timeout=5, session=session)

    assert transport("get", "http://api.test/team/members") == {"members": []}
    sent = session.requests[0]
    assert sent["method"] == "GET"
    assert sent["json"] is None
    assert sent["timeout"] == 5
    assert sent["headers"]["Content-Type"] == "application/json"


def test_write_sends_json_and_extra_headers():
    session = FakeSession(FakeResponse(body={"id": 1}))
    transport = HttpTransport(session=session)

    transport("POST", "http://api.test/tasks", {"title": "t"}, {"Accept": "text/csv"})

    sent = session.requests[0]
    assert sent["json"] == {"title": "t"}
    assert sent["headers"]["Accept"] == "text/csv"


def test_non_json_body_returns_text():
    transport = HttpTransport(session=FakeSession(FakeResponse(text="id,name\n1,ana")))
    assert transport("GET", "http://api.test/export/team") == "id,name\n1,ana"


def test_empty_body_returns_none():
    transport = HttpTransport(session=FakeSession(FakeResponse(status_code=204)))
    assert transport("DELETE", "http://api.test/tasks/bulk") is None


def test_http_error_status_is_not_retried():
    session = FakeSession(FakeResponse(status_code=500, body={"error": "boom"}))
    transport = HttpTransport(retry_attempts=3, session=session)

    with pytest.raises(TransportError, match="HTTP error! status: 500") as exc_info:
        transport("GET", "http://api.test/stats")
    assert exc_info.value.status_code == 500
    assert len(session.requests) == 1


def test_connection_error_is_retried_then_succeeds():
    session = FakeSession(
        requests.ConnectionError("refused"),
        FakeResponse(body={"ok": True}),
    )
    transport = HttpTransport(retry_attempts=2, session=session)

    assert transport("GET", "http://api.test/stats") == {"ok": True}
    assert len(session.requests) == 2


def test_exhausted_retries_raise_transport_error():
    session = FakeSession(requests.Timeout("slow"))
    transport = HttpTransport(retry_attempts=1, session=session)

    with pytest.raises(TransportError) as exc_info:
        transport("GET", "http://api.test/stats")
    assert exc_info.value.status_code is None
    assert type(exc_info.value) is TransportError


def test_close_closes_session():
    session = FakeSession()
    HttpTransport(session=session).close()
    assert session.closed
