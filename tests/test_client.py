import pytest
import requests

from security.policy.abac import subject
from security.policy.client import AbilityClient, ClientAbility

PAYLOAD = {
    "rules": [
        {"action": "read", "subject": "User", "inverted": False},
        {"action": "manage", "subject": "Customer", "inverted": False, "conditions": {"owner.id": "u1"}},
        {"action": "delete", "subject": "User", "inverted": True},
    ],
    "role": "user",
    "user": {"id": "u1", "email": "u1@example.com", "name": "U1", "role": "user"},
}


class StubResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class StubSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


# ==================== MIRROR ====================

def test_mirror_from_payload():
    mirror = ClientAbility.from_payload(PAYLOAD)

    assert mirror.is_authenticated
    assert mirror.role == "user"
    assert mirror.can("read", "User")
    assert mirror.cannot("delete", "User")
    assert mirror.can("update", subject("Customer", {"owner": {"id": "u1"}}))
    assert mirror.cannot("update", subject("Customer", {"owner": {"id": "u2"}}))


def test_empty_mirror_denies_everything():
    for mirror in (ClientAbility.empty(), ClientAbility.from_payload(None)):
        assert not mirror.is_authenticated
        assert mirror.cannot("read", "User")
        assert mirror.rules == []


# ==================== FETCH ====================

def test_fetch_sends_bearer_token():
    session = StubSession(StubResponse(200, PAYLOAD))
    client = AbilityClient(base_url="http://api.local/", token="abc", session=session)

    mirror = client.fetch()

    assert mirror.can("read", "User")
    call = session.calls[0]
    assert call["url"] == "http://api.local/api/abilities"
    assert call["headers"]["Authorization"] == "Bearer abc"
    assert call["timeout"] == 10.0


def test_fetch_unauthenticated_returns_empty_mirror():
    session = StubSession(StubResponse(401, {"error": "Unauthorized"}))
    mirror = AbilityClient(base_url="http://api.local", session=session).fetch()

    assert not mirror.is_authenticated
    assert "Authorization" not in session.calls[0]["headers"]


def test_fetch_raises_on_server_error():
    session = StubSession(StubResponse(500, {"error": "Authorization error"}))
    with pytest.raises(requests.HTTPError):
        AbilityClient(base_url="http://api.local", token="abc", session=session).fetch()


def test_fetch_raises_on_transport_error():
    session = StubSession(error=requests.ConnectionError("refused"))
    with pytest.raises(requests.ConnectionError):
        AbilityClient(base_url="http://api.local", session=session).fetch()


def test_base_url_from_environment(monkeypatch):
    monkeypatch.setenv("ABILITY_API_URL", "http://env.local:9000")
    assert AbilityClient(session=StubSession()).base_url == "http://env.local:9000"
