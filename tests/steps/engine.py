"""pytest-bdd steps shared by the replay engine and recording features."""

from __future__ import annotations

import json
import typing as t

import httpx
import pytest
from pytest_bdd import given, parsers, then, when

from http_mox.controller import HttpMox
from http_mox.errors import HttpMoxError

_GET_URL = r'the client requests GET "(?P<url>[^"]+)"'


@pytest.fixture
def network_calls() -> list[str]:
    """URLs that reached the fake network."""
    return []


@pytest.fixture
def client_outcome() -> dict[str, t.Any]:
    """The last response or error seen by the client."""
    return {}


@given("an http-mox engine", target_fixture="mox")
def create_engine(request: pytest.FixtureRequest) -> HttpMox:
    """Create an engine intercepting only its own transports."""
    mox = HttpMox(facility=None)
    request.addfinalizer(mox.restore)
    return mox


def _send(
    mox: HttpMox,
    network_calls: list[str],
    client_outcome: dict[str, t.Any],
    request: httpx.Request,
) -> None:
    def network(sent: httpx.Request) -> httpx.Response:
        network_calls.append(str(sent.url))
        return httpx.Response(200, json={"url": str(sent.url)})

    client_outcome.clear()
    with httpx.Client(transport=mox.transport(httpx.MockTransport(network))) as client:
        try:
            client_outcome["response"] = client.send(request)
        except HttpMoxError as exc:
            client_outcome["error"] = exc


@when(parsers.re(rf"^{_GET_URL}$"))
def client_requests(
    mox: HttpMox,
    network_calls: list[str],
    client_outcome: dict[str, t.Any],
    url: str,
) -> None:
    """Send a GET request through the engine."""
    _send(mox, network_calls, client_outcome, httpx.Request("GET", url))


@when(parsers.re(rf'^{_GET_URL} with authorization "(?P<token>[^"]+)"$'))
def client_requests_with_authorization(
    mox: HttpMox,
    network_calls: list[str],
    client_outcome: dict[str, t.Any],
    url: str,
    token: str,
) -> None:
    """Send a GET request carrying an Authorization header."""
    request = httpx.Request("GET", url, headers={"Authorization": token})
    _send(mox, network_calls, client_outcome, request)


@then(parsers.parse("the client receives status {status:d} and body '{body}'"))
def client_received(client_outcome: dict[str, t.Any], status: int, body: str) -> None:
    """Assert the client saw the expected response."""
    assert "error" not in client_outcome, client_outcome.get("error")
    response: httpx.Response = client_outcome["response"]
    assert response.status_code == status
    assert response.json() == json.loads(body)


@then("the network was not used")
def network_not_used(network_calls: list[str]) -> None:
    """Assert no request reached the fake network."""
    assert network_calls == []
