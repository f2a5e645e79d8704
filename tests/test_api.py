from structlog.testing import capture_logs

from app.config import get_settings
from app.metrics.flow_id import is_valid_flow_id
from app.metrics.store import MetricsContextStore
from app.services.auth_service import credentials_from_token
from conftest import FLOW_KEY


async def _begin_flow(api_client) -> dict:
    resp = await api_client.get("/metrics-flow")
    assert resp.status_code == 200
    return resp.json()


async def _create_account(api_client, email: str, metrics_context: dict | None = None):
    body = {"email": email, "password": "password123"}
    if metrics_context is not None:
        body["metricsContext"] = metrics_context
    return await api_client.post("/account/create", json=body)


def _session_credentials(api_client):
    return credentials_from_token(api_client.cookies.get(get_settings().jwt_cookie_name))


async def test_responses_include_x_request_id(api_client) -> None:
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.headers.get("x-request-id")


async def test_metrics_flow_issues_a_valid_flow(api_client) -> None:
    flow = await _begin_flow(api_client)

    assert len(flow["flowId"]) == 64
    assert is_valid_flow_id(FLOW_KEY, flow["flowId"], flow["flowBeginTime"])


async def test_create_account_tracks_and_stashes_valid_flow(api_client, db_session) -> None:
    flow = await _begin_flow(api_client)

    resp = await _create_account(api_client, "flow@example.com", flow)

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is True
    stashed = MetricsContextStore(db_session, ttl_ms=0).get(_session_credentials(api_client))
    assert stashed is not None
    assert stashed.flow_id == flow["flowId"]
    assert stashed.flow_complete_signal == "account.verified"


async def test_create_account_with_tampered_flow_proceeds_untracked(api_client, db_session) -> None:
    flow = await _begin_flow(api_client)
    flow["flowId"] = flow["flowId"][:32] + "0" * 32

    resp = await _create_account(api_client, "tampered@example.com", flow)

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is False
    assert MetricsContextStore(db_session, ttl_ms=0).get(_session_credentials(api_client)) is None


async def test_create_account_without_metrics_context(api_client) -> None:
    resp = await _create_account(api_client, "plain@example.com")
    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is False


async def test_create_account_rejects_duplicate_email(api_client) -> None:
    assert (await _create_account(api_client, "dup@example.com")).status_code == 200
    assert (await _create_account(api_client, "dup@example.com")).status_code == 400


async def test_verify_session_completes_stashed_flow(api_client, db_session) -> None:
    flow = await _begin_flow(api_client)
    await _create_account(api_client, "verify@example.com", flow)
    credentials = _session_credentials(api_client)

    with capture_logs() as logs:
        resp = await api_client.post("/session/verify")

    assert resp.status_code == 200
    assert resp.json() == {"status": "verified", "flowId": flow["flowId"]}

    flow_events = [entry["event_type"] for entry in logs if entry["event"] == "flowEvent"]
    assert flow_events == ["route./session/verify.200", "account.verified", "flow.complete"]
    assert MetricsContextStore(db_session, ttl_ms=0).get(credentials) is None


async def test_login_completes_flow_immediately(api_client, db_session) -> None:
    await _create_account(api_client, "login@example.com")
    flow = await _begin_flow(api_client)

    with capture_logs() as logs:
        resp = await api_client.post(
            "/account/login",
            json={"email": "login@example.com", "password": "password123", "metricsContext": flow},
        )

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is True
    flow_events = [entry["event_type"] for entry in logs if entry["event"] == "flowEvent"]
    assert flow_events == ["route./account/login.200", "account.login", "flow.complete"]
    assert MetricsContextStore(db_session, ttl_ms=0).get(_session_credentials(api_client)) is None


async def test_login_rejects_bad_password(api_client) -> None:
    await _create_account(api_client, "badpw@example.com")
    resp = await api_client.post("/account/login", json={"email": "badpw@example.com", "password": "wrong-password"})
    assert resp.status_code == 401


async def test_destroy_session_clears_stashed_flow(api_client, db_session) -> None:
    flow = await _begin_flow(api_client)
    await _create_account(api_client, "destroy@example.com", flow)
    credentials = _session_credentials(api_client)

    resp = await api_client.post("/session/destroy")

    assert resp.status_code == 200
    assert resp.json()["flowId"] == flow["flowId"]
    assert MetricsContextStore(db_session, ttl_ms=0).get(credentials) is None


async def test_session_routes_require_a_session(api_client) -> None:
    assert (await api_client.post("/session/verify")).status_code == 401
    assert (await api_client.post("/session/destroy")).status_code == 401


async def test_create_account_with_non_string_flow_id_proceeds_untracked(api_client, db_session) -> None:
    resp = await _create_account(api_client, "intflow@example.com", {"flowId": 12345, "flowBeginTime": 1})

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is False
    assert MetricsContextStore(db_session, ttl_ms=0).get(_session_credentials(api_client)) is None


async def test_create_account_without_flow_begin_time_proceeds_untracked(api_client) -> None:
    resp = await _create_account(api_client, "nobegin@example.com", {"flowId": "a" * 64})

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is False


async def test_login_with_malformed_metrics_context_proceeds_untracked(api_client) -> None:
    await _create_account(api_client, "badctx@example.com")

    resp = await api_client.post(
        "/account/login",
        json={"email": "badctx@example.com", "password": "password123", "metricsContext": {"flowId": None}},
    )

    assert resp.status_code == 200
    assert resp.json()["flowTracked"] is False
