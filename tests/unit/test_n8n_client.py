"""Unit tests for the n8n REST client"""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests

from floworx.infrastructure.retry import CircuitBreaker, RetryPolicy
from floworx.workflows.n8n_client import N8nApiError, N8nClient, extract_credential_id


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return N8nClient(
        base_url="http://n8n.test:5678/",
        api_key="key-1",
        session=session,
        retry_policy=RetryPolicy("n8n_test", max_attempts=3, sleep_fn=lambda _: None),
        breaker=CircuitBreaker("n8n_test", fail_max=10),
    )


def test_requests_carry_api_key(client, session, make_response):
    session.request.return_value = make_response(200, {"id": "wf-1", "active": True})

    assert client.get_workflow("wf-1") == {"id": "wf-1", "active": True}

    call = session.request.call_args
    assert call.args == ("GET", "http://n8n.test:5678/api/v1/workflows/wf-1")
    assert call.kwargs["headers"]["X-N8N-API-KEY"] == "key-1"


def test_list_workflows_sends_filters(client, session, make_response):
    session.request.return_value = make_response(200, {"data": [], "nextCursor": None})

    client.list_workflows(active=True, name="hot-tub-man-ltd-abc12-workflow", limit=10)

    assert session.request.call_args.kwargs["params"] == {
        "active": "true",
        "name": "hot-tub-man-ltd-abc12-workflow",
        "limit": 10,
    }


def test_list_workflows_without_filters(client, session, make_response):
    session.request.return_value = make_response(200, {"data": []})

    client.list_workflows()

    assert session.request.call_args.kwargs["params"] is None


def test_idempotent_requests_are_retried(client, session, make_response):
    session.request.side_effect = [
        make_response(503, reason="Service Unavailable"),
        make_response(200, {"id": "wf-1", "active": True}),
    ]

    assert client.activate_workflow("wf-1")["active"] is True
    assert session.request.call_count == 2


def test_creates_are_not_retried(client, session, make_response):
    session.request.return_value = make_response(500, {"message": "boom"}, reason="Server Error")

    with pytest.raises(N8nApiError) as exc_info:
        client.create_workflow({"name": "wf"})

    assert exc_info.value.status_code == 500
    assert "boom" in exc_info.value.body
    assert session.request.call_count == 1


def test_client_errors_are_not_retried(client, session, make_response):
    session.request.return_value = make_response(404, {"message": "Not found"}, reason="Not Found")

    with pytest.raises(N8nApiError):
        client.get_workflow("missing")
    assert session.request.call_count == 1


def test_create_credential_body(client, session, make_response):
    session.request.return_value = make_response(200, {"id": "cred-1", "name": "gmail-acme"})

    client.create_credential(
        "gmail-acme", "gmailOAuth2", {"clientId": "cid"}, node_types=["n8n-nodes-base.gmail"]
    )

    body = session.request.call_args.kwargs["json"]
    assert body == {
        "name": "gmail-acme",
        "type": "gmailOAuth2",
        "data": {"clientId": "cid"},
        "nodesAccess": [{"nodeType": "n8n-nodes-base.gmail"}],
    }


def test_empty_response_body(client, session, make_response):
    session.request.return_value = make_response(204)
    assert client.delete_workflow("wf-1") == {}


def test_get_execution_include_data(client, session, make_response):
    session.request.return_value = make_response(200, {"id": "ex-1"})

    client.get_execution("ex-1", include_data=True)

    assert session.request.call_args.kwargs["params"] == {"includeData": "true"}


def test_is_available(client, session, make_response):
    session.request.return_value = make_response(200, {"data": []})
    assert client.is_available() is True

    session.request.side_effect = requests.ConnectionError("refused")
    assert client.is_available() is False


@pytest.mark.parametrize(
    "response,expected",
    [
        ({"id": "c1"}, "c1"),
        ({"credentialId": 42}, "42"),
        ({"data": {"id": "c3"}}, "c3"),
        ({"data": {"credentialId": "c4"}}, "c4"),
        ({"data": "oops"}, None),
        ({}, None),
    ],
)
def test_extract_credential_id(response, expected):
    assert extract_credential_id(response) == expected


def test_open_circuit_surfaces_as_n8n_error(session):
    breaker = CircuitBreaker("n8n_test", fail_max=1, reset_timeout=60)
    breaker.record_failure()
    client = N8nClient(base_url="http://n8n.test:5678", api_key="key-1", session=session, breaker=breaker)

    with pytest.raises(N8nApiError, match="circuit open") as exc_info:
        client.activate_workflow("wf-1")

    assert exc_info.value.status_code is None
    session.request.assert_not_called()
    assert client.is_available() is False


def test_client_errors_do_not_open_default_breaker(session, make_response):
    client = N8nClient(
        base_url="http://n8n.test:5678",
        api_key="key-1",
        session=session,
        retry_policy=RetryPolicy("n8n_test", max_attempts=1),
    )
    session.request.return_value = make_response(404, {"message": "Not found"}, reason="Not Found")

    for _ in range(6):
        with pytest.raises(N8nApiError):
            client.get_workflow("missing")

    assert client.breaker.state == "closed"
    assert N8nClient(session=session).breaker is not client.breaker


def test_unreachable_n8n_opens_breaker(session):
    client = N8nClient(
        base_url="http://n8n.test:5678",
        api_key="key-1",
        session=session,
        retry_policy=RetryPolicy("n8n_test", max_attempts=1),
        breaker=CircuitBreaker("n8n_test", fail_max=2),
    )
    session.request.side_effect = requests.ConnectionError("refused")

    for _ in range(2):
        with pytest.raises(N8nApiError):
            client.get_workflow("wf-1")

    with pytest.raises(N8nApiError, match="skipped"):
        client.get_workflow("wf-1")
    assert session.request.call_count == 2
