from __future__ import annotations

import pytest
import requests

from listing_client.rest_client import ListingsRestClient
from listing_core.errors import InvalidMutation, PersistenceFailure, TransportUnavailable, Unauthorized


class _Resp:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _client(result, token="tok"):
    session = _Session(result)
    return ListingsRestClient(base_url="http://hub:3000/", admin_token=token, timeout_s=2, session=session), session


def test_requests_carry_admin_token_and_timeout():
    client, session = _client(_Resp(200, {"ok": True, "listing": {"id": "a b"}}))
    client.update_listing("a b", {"title": "x"})

    method, url, kwargs = session.calls[0]
    assert method == "PUT"
    assert url == "http://hub:3000/api/listings/a%20b"
    assert kwargs["headers"]["x-admin-token"] == "tok"
    assert kwargs["timeout"] == 2
    assert kwargs["json"] == {"title": "x"}


def test_no_token_header_without_token():
    client, session = _client(_Resp(200, []), token="")
    assert client.get_listings() == []
    assert "x-admin-token" not in session.calls[0][2]["headers"]


@pytest.mark.parametrize(
    "result, exc_type",
    [
        (requests.Timeout("slow"), TransportUnavailable),
        (requests.ConnectionError("down"), TransportUnavailable),
        (_Resp(401, {"error": "Unauthorized"}), Unauthorized),
        (_Resp(400, {"error": "Invalid listing"}), InvalidMutation),
        (_Resp(500, ValueError("not json")), PersistenceFailure),
    ],
)
def test_failures_map_to_error_taxonomy_without_retry(result, exc_type):
    client, session = _client(result)
    with pytest.raises(exc_type):
        client.create_listing({"id": "1"})
    assert len(session.calls) == 1


def test_login_adopts_password_as_token():
    client, _ = _client(_Resp(200, {"ok": True}), token="")
    assert client.login("pw") is True
    assert client.admin_token == "pw"


def test_create_requires_id_locally():
    client, session = _client(_Resp(200, {}))
    with pytest.raises(InvalidMutation):
        client.create_listing({"title": "no id"})
    assert session.calls == []
