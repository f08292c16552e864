import logging

import httpx
import pytest

from sf_session import RequestFailed, SalesforceSession
from sf_session.exceptions import SalesforceExpiredSession

from .fakes import DATA_URL, INSTANCE_URL, REDIRECT_URL, connect_error


def test_build_url(sf_session):
    assert sf_session.version == "43.0"
    assert sf_session.build_url("limits") == f"{DATA_URL}limits"
    assert sf_session.build_url("query?q=x") == f"{DATA_URL}query?q=x"
    assert sf_session.build_url("limits") == sf_session.build_url("limits")


@pytest.mark.parametrize("version", [59, 59.0, "59.0", "59"])
def test_version_is_normalized(fake_salesforce, session_factory, version):
    session = session_factory(fake_salesforce, version=version)
    assert session.version == "59.0"
    assert session.versioned_path("limits") == "v59.0/limits"


def test_build_url_with_custom_configuration(fake_salesforce, session_factory):
    session = session_factory(
        fake_salesforce,
        instance_url="https://test.salesforce.com",
        services_base_path="/services/custom/",
    )
    assert session.build_url("limits") == (
        "https://test.salesforce.com/services/custom/v43.0/limits"
    )


def test_cursor_action(sf_session):
    assert sf_session.cursor_action("/services/data/v43.0/query/01gRO-2000") == (
        "query/01gRO-2000"
    )
    assert sf_session.cursor_action("/next") == "next"


def test_execute_sends_authenticated_request(sf_session, fake_salesforce):
    fake_salesforce.queue({"DailyApiRequests": {"Max": 15000, "Remaining": 14998}})

    result = sf_session.execute("get", "limits")

    assert result == {"DailyApiRequests": {"Max": 15000, "Remaining": 14998}}
    (request,) = fake_salesforce.requests
    assert request.method == "GET"
    assert str(request.url) == f"{DATA_URL}limits"
    assert request.headers["Authorization"] == "Bearer 00Dxx0000001gPL!AQ4AQFake"
    assert request.headers["Accept"] == "application/json"
    assert sf_session.request_count == 1
    assert sf_session.request_error_count == 0


def test_execute_sends_json_payload(sf_session, fake_salesforce):
    fake_salesforce.queue({"id": "003xx", "success": True, "errors": []})

    sf_session.execute("POST", "sobjects/Contact/", {"LastName": "Doe"})

    (request,) = fake_salesforce.requests
    assert request.headers["Content-Type"] == "application/json"
    assert fake_salesforce.bodies() == [{"LastName": "Doe"}]


def test_execute_patch_returns_status_code(sf_session, fake_salesforce):
    fake_salesforce.queue(httpx.Response(204))

    assert sf_session.execute("PATCH", "sobjects/Contact/003xx", {"Title": "CEO"}) == 204


def test_execute_honours_credential_changes(sf_session, fake_salesforce):
    fake_salesforce.queue({}, {})

    sf_session.execute("GET", "limits")
    sf_session.credentials.update(access_token="rotated")
    sf_session.execute("GET", "limits")

    first, second = fake_salesforce.requests
    assert first.headers["Authorization"] == "Bearer 00Dxx0000001gPL!AQ4AQFake"
    assert second.headers["Authorization"] == "Bearer rotated"


def test_execute_passes_transport_params(sf_session, fake_salesforce):
    fake_salesforce.queue({})

    sf_session.execute("GET", "limits", headers={"X-Trace": "1"})

    assert fake_salesforce.requests[0].headers["X-Trace"] == "1"
    assert "Authorization" in fake_salesforce.requests[0].headers


def test_execute_retries_until_success(sf_session, fake_salesforce):
    fake_salesforce.queue(
        connect_error, connect_error, connect_error, {"records": []}
    )

    assert sf_session.execute("GET", "limits") == {"records": []}
    assert len(fake_salesforce.requests) == 4
    assert sf_session.request_count == 1
    assert sf_session.request_error_count == 3


def test_execute_fails_after_four_attempts(sf_session, fake_salesforce, caplog):
    fake_salesforce.queue(*[connect_error] * 4)

    with caplog.at_level(logging.WARNING, logger="sf_session"):
        with pytest.raises(RequestFailed) as excinfo:
            sf_session.execute("GET", "limits")

    assert excinfo.value.method == "GET"
    assert excinfo.value.action == "limits"
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert len(fake_salesforce.requests) == 4
    assert sf_session.request_count == 1
    assert sf_session.request_error_count == 4
    assert "attempt 4 of 4" in caplog.text


def test_execute_retries_non_json_bodies(sf_session, fake_salesforce):
    fake_salesforce.queue(httpx.Response(200, text="<html>maintenance</html>"), {"ok": 1})

    assert sf_session.execute("GET", "limits") == {"ok": 1}
    assert sf_session.request_error_count == 1


def test_missing_token_fails_service_side(fake_salesforce, session_factory):
    session = session_factory(
        fake_salesforce,
        oauth_url="https://app.example.com/callback#instance_url=https%3A%2F%2Fexample.my.salesforce.com",
    )
    def unauthorized(request):
        return httpx.Response(
            401, json=[{"errorCode": "INVALID_SESSION_ID", "message": "Session expired"}]
        )

    fake_salesforce.queue(*[unauthorized] * 4)

    with pytest.raises(RequestFailed) as excinfo:
        session.execute("GET", "limits")

    assert isinstance(excinfo.value.__cause__, SalesforceExpiredSession)
    assert fake_salesforce.requests[0].headers["Authorization"] == "None None"


def test_api_usage_is_recorded(sf_session, fake_salesforce):
    fake_salesforce.queue(
        httpx.Response(200, json={}, headers={"Sforce-Limit-Info": "api-usage=18/5000"})
    )

    sf_session.execute("GET", "limits")

    assert sf_session.api_usage.api_usage.used == 18
    assert sf_session.api_usage.api_usage.total == 5000


def test_fetch_issues_plain_get(sf_session, fake_salesforce):
    fake_salesforce.queue({"sobjects": []})

    assert sf_session.fetch("sobjects/") == {"sobjects": []}
    assert fake_salesforce.requests[0].method == "GET"
    assert str(fake_salesforce.requests[0].url) == f"{DATA_URL}sobjects/"


def test_fetch_leaves_httpx_get_untouched():
    assert SalesforceSession.get is httpx.Client.get
    assert SalesforceSession.fetch is not httpx.Client.get


def test_fetch_reroutes_oversized_get_through_batch(sf_session, fake_salesforce):
    action = "query?q=" + "SELECT+Id+FROM+Contact+WHERE+Id+IN+" + "x" * 2100
    fake_salesforce.queue(
        {
            "hasErrors": False,
            "results": [{"statusCode": 200, "result": {"records": [{"Id": "1"}]}}],
        }
    )

    result = sf_session.fetch(action)

    assert result == {"records": [{"Id": "1"}]}
    (request,) = fake_salesforce.requests
    assert request.method == "POST"
    assert str(request.url) == f"{DATA_URL}composite/batch/"
    assert fake_salesforce.bodies() == [
        {"batchRequests": [{"method": "GET", "url": f"v43.0/{action}"}]}
    ]
    assert sf_session.request_count == 1


def test_fetch_url_length_boundary(sf_session, fake_salesforce):
    limit = sf_session.MAX_URL_LENGTH - len(sf_session.build_url(""))
    fake_salesforce.queue({"ok": True})

    sf_session.fetch("a" * limit)

    assert fake_salesforce.requests[0].method == "GET"
    assert sf_session.exceeds_url_limit("a" * (limit + 1))


def test_fetch_oversized_get_with_failed_sub_request(sf_session, fake_salesforce):
    fake_salesforce.queue(
        {
            "hasErrors": True,
            "results": [
                {"statusCode": 400, "result": [{"errorCode": "MALFORMED_QUERY"}]}
            ],
        }
    )

    with pytest.raises(RequestFailed):
        sf_session.fetch("query?q=" + "x" * 2100)


def test_fetch_oversized_get_with_no_sub_results(sf_session, fake_salesforce):
    fake_salesforce.queue({"hasErrors": False, "results": []})

    with pytest.raises(RequestFailed) as excinfo:
        sf_session.fetch("query?q=" + "x" * 2100)

    assert excinfo.value.method == "GET"
    assert excinfo.value.action.startswith("query?q=")


def test_fetch_list_routes_through_batch(sf_session, fake_salesforce):
    fake_salesforce.queue(
        {
            "hasErrors": False,
            "results": [
                {"statusCode": 200, "result": {"Id": "001A"}},
                {"statusCode": 200, "result": {"Id": "001B"}},
            ],
        }
    )

    result = sf_session.fetch(["sobjects/Account/001A", "sobjects/Account/001B"])

    assert [r["result"]["Id"] for r in result["results"]] == ["001A", "001B"]
    assert fake_salesforce.requests[0].method == "POST"


def test_context_manager_logs_session(fake_salesforce, caplog):
    with caplog.at_level(logging.INFO, logger="sf_session"):
        with SalesforceSession(
            REDIRECT_URL, transport=httpx.MockTransport(fake_salesforce)
        ) as session:
            assert isinstance(session, SalesforceSession)

    assert INSTANCE_URL in caplog.text
    assert session.is_closed
