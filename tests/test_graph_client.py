from unittest.mock import MagicMock

import pytest
import requests

from entra_console.graph_client import (
    GRAPH_BASE_URL,
    ErrorKind,
    GraphClient,
    GraphError,
    SessionExpiredError,
    classify_error,
)


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else text.encode()
    response.text = text
    if payload is not None:
        response.json.return_value = payload
    else:
        response.json.side_effect = ValueError("no json")
    return response


@pytest.fixture
def session():
    manager = MagicMock()
    manager.access_token.return_value = "token-abc"
    return manager


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def client(session, http):
    return GraphClient(session, http=http, timeout=12)


@pytest.mark.parametrize(
    "status, code, expected",
    [
        (401, "InvalidAuthenticationToken", ErrorKind.AUTHORIZATION_EXPIRED),
        (400, "InvalidAuthenticationToken", ErrorKind.AUTHORIZATION_EXPIRED),
        (404, "Request_ResourceNotFound", ErrorKind.NOT_FOUND),
        (400, "Request_ResourceNotFound", ErrorKind.NOT_FOUND),
        (403, "Authorization_RequestDenied", ErrorKind.FORBIDDEN),
        (429, "TooManyRequests", ErrorKind.THROTTLED),
        (500, "UnknownError", ErrorKind.REMOTE),
    ],
)
def test_classify_error(status, code, expected):
    assert classify_error(status, code) is expected


def test_request_sends_bearer_token(client, http):
    http.request.return_value = _response(payload={"value": [{"id": "u1"}]})

    assert client.list_users(top=20) == [{"id": "u1"}]

    method, url = http.request.call_args.args
    kwargs = http.request.call_args.kwargs
    assert method == "GET"
    assert url == f"{GRAPH_BASE_URL}/users"
    assert kwargs["headers"]["Authorization"] == "Bearer token-abc"
    assert kwargs["params"]["$top"] == "20"
    assert kwargs["timeout"] == 12


def test_suffix_search_uses_eventual_consistency(client, http):
    http.request.return_value = _response(payload={"value": []})

    client.search_users("endswith(displayName,'son')", top=10, advanced=True)

    kwargs = http.request.call_args.kwargs
    assert kwargs["headers"]["ConsistencyLevel"] == "eventual"
    assert kwargs["params"]["$count"] == "true"


def test_prefix_search_does_not_request_count(client, http):
    http.request.return_value = _response(payload={"value": []})

    client.search_users("startswith(displayName,'jo')", top=10)

    kwargs = http.request.call_args.kwargs
    assert "ConsistencyLevel" not in kwargs["headers"]
    assert "$count" not in kwargs["params"]


def test_find_user_by_principal_name_escapes_quotes(client, http):
    http.request.return_value = _response(payload={"value": []})

    assert client.find_user_by_principal_name("o'brien@contoso.com") is None
    assert http.request.call_args.kwargs["params"]["$filter"] == "userPrincipalName eq 'o''brien@contoso.com'"


def test_add_and_remove_license_payloads(client, http):
    http.request.return_value = _response(payload={"id": "u1"})

    client.add_license("u1", "sku-1")
    add_call = http.request.call_args
    client.remove_license("u1", "sku-1")
    remove_call = http.request.call_args

    assert add_call.args[1].endswith("/users/u1/assignLicense")
    assert add_call.kwargs["json"] == {"addLicenses": [{"skuId": "sku-1", "disabledPlans": []}], "removeLicenses": []}
    assert remove_call.kwargs["json"] == {"addLicenses": [], "removeLicenses": ["sku-1"]}


def test_update_user_skips_unset_fields(client, http):
    http.request.return_value = _response(status_code=204)

    client.update_user("u1", jobTitle="Engineer", department=None)
    assert http.request.call_args.kwargs["json"] == {"jobTitle": "Engineer"}

    http.request.reset_mock()
    assert client.update_user("u1", department=None) == {}
    http.request.assert_not_called()


def test_delete_authentication_method_uses_type_endpoint(client, http):
    http.request.return_value = _response(status_code=204)

    client.delete_authentication_method("u1", "phoneMethods", "m-1")

    method, url = http.request.call_args.args
    assert method == "DELETE"
    assert url == f"{GRAPH_BASE_URL}/users/u1/authentication/phoneMethods/m-1"


def test_error_body_is_parsed(client, http):
    http.request.return_value = _response(
        status_code=404,
        payload={"error": {"code": "Request_ResourceNotFound", "message": "Resource 'g1' does not exist."}},
    )

    with pytest.raises(GraphError) as excinfo:
        client.get_group("g1")

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.error == "Request_ResourceNotFound"
    assert "does not exist" in str(excinfo.value)


def test_non_json_error_body(client, http):
    http.request.return_value = _response(status_code=502, text="Bad Gateway")

    with pytest.raises(GraphError, match="Bad Gateway"):
        client.list_subscribed_skus()


def test_unauthorized_invalidates_session(client, http, session):
    http.request.return_value = _response(
        status_code=401, payload={"error": {"code": "InvalidAuthenticationToken", "message": "Token expired."}}
    )

    with pytest.raises(GraphError) as excinfo:
        client.list_users(top=5)

    assert excinfo.value.kind is ErrorKind.AUTHORIZATION_EXPIRED
    session.invalidate.assert_called_once_with()


def test_missing_token_invalidates_session(client, http, session):
    session.access_token.side_effect = SessionExpiredError("No active Microsoft Graph session.")

    with pytest.raises(SessionExpiredError):
        client.list_users(top=5)

    session.invalidate.assert_called_once_with()
    http.request.assert_not_called()


def test_other_errors_keep_session(client, http, session):
    http.request.return_value = _response(
        status_code=403, payload={"error": {"code": "Authorization_RequestDenied", "message": "Denied."}}
    )

    with pytest.raises(GraphError):
        client.list_users(top=5)

    session.invalidate.assert_not_called()


def test_network_failure_is_wrapped(client, http):
    http.request.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(GraphError) as excinfo:
        client.list_users(top=5)

    assert excinfo.value.status_code == 0
    assert excinfo.value.kind is ErrorKind.REMOTE


def test_user_groups_follow_next_link(client, http):
    next_link = f"{GRAPH_BASE_URL}/users/u1/memberOf/microsoft.graph.group?$skiptoken=page2"
    http.request.side_effect = [
        _response(payload={"value": [{"id": "g1"}], "@odata.nextLink": next_link}),
        _response(payload={"value": [{"id": "g2"}]}),
    ]

    assert [group["id"] for group in client.get_user_groups("u1")] == ["g1", "g2"]

    first, second = http.request.call_args_list
    assert first.args[1] == f"{GRAPH_BASE_URL}/users/u1/memberOf/microsoft.graph.group"
    assert first.kwargs["params"] == {"$select": "id,displayName"}
    assert second.args == ("GET", next_link)
    assert "params" not in second.kwargs
