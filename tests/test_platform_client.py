"""
Tests for serving/api/platform_client.py.
Requests are captured with httpx.MockTransport — no network access.
"""

import json

import httpx
import pytest

from platform_client import PlatformClient, PlatformError, build_filters

BASE_URL = "https://proptor.test"


def _client(handler, access_token="user-token"):
    http_client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return PlatformClient(http_client, "anon-key", access_token)


class Recorder:
    """MockTransport handler that records requests and replies with a canned response."""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = [] if body is None else body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class TestBuildFilters:
    def test_equality(self):
        assert build_filters({"user_id": "u1"}) == {"user_id": "eq.u1"}

    def test_booleans_lowercase(self):
        assert build_filters({"is_resolved": False}) == {"is_resolved": "eq.false"}

    def test_none_uses_is_null(self):
        assert build_filters({"resolved_at": None}) == {"resolved_at": "is.null"}

    def test_empty(self):
        assert build_filters(None) == {}


class TestPlatformClient:
    @pytest.mark.asyncio
    async def test_rpc_posts_params(self):
        rec = Recorder(body=[{"risk_score": 80}])
        client = _client(rec)
        rows = await client.rpc("calculate_client_risk_score", {"contact_uuid": "c1", "user_uuid": "u1"})
        assert rows == [{"risk_score": 80}]
        assert rec.last.method == "POST"
        assert rec.last.url.path == "/rest/v1/rpc/calculate_client_risk_score"
        assert json.loads(rec.last.content) == {"contact_uuid": "c1", "user_uuid": "u1"}

    @pytest.mark.asyncio
    async def test_auth_headers(self):
        rec = Recorder()
        await _client(rec).select("contacts")
        assert rec.last.headers["apikey"] == "anon-key"
        assert rec.last.headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_anon_key_used_without_token(self):
        rec = Recorder()
        await _client(rec, access_token=None).select("contacts")
        assert rec.last.headers["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_with_token_switches_identity(self):
        rec = Recorder()
        anon = _client(rec, access_token=None)
        await anon.with_token("other-token").select("contacts")
        assert rec.last.headers["Authorization"] == "Bearer other-token"
        assert anon.access_token is None

    @pytest.mark.asyncio
    async def test_select_query_params(self):
        rec = Recorder(body=[{"id": "a1"}])
        rows = await _client(rec).select(
            "risk_alerts",
            columns="*, contacts!inner(id, full_name)",
            filters={"user_id": "u1", "is_resolved": False},
            order=("created_at", True),
        )
        assert rows == [{"id": "a1"}]
        params = rec.last.url.params
        assert rec.last.method == "GET"
        assert rec.last.url.path == "/rest/v1/risk_alerts"
        assert params["select"] == "*,contacts!inner(id,full_name)"
        assert params["user_id"] == "eq.u1"
        assert params["is_resolved"] == "eq.false"
        assert params["order"] == "created_at.desc"

    @pytest.mark.asyncio
    async def test_select_ascending_order(self):
        rec = Recorder()
        await _client(rec).select("client_risk_metrics", order=("risk_score", False))
        assert rec.last.url.params["order"] == "risk_score.asc"

    @pytest.mark.asyncio
    async def test_insert_requests_representation(self):
        rec = Recorder(status_code=201, body=[{"id": "r1"}])
        rows = await _client(rec).insert("recovery_actions", {"outcome": "pending"})
        assert rows == [{"id": "r1"}]
        assert rec.last.method == "POST"
        assert rec.last.headers["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_upsert_conflict_key(self):
        rec = Recorder(status_code=201)
        await _client(rec).upsert(
            "client_risk_metrics", {"user_id": "u1", "contact_id": "c1"}, on_conflict=("user_id", "contact_id")
        )
        assert rec.last.url.params["on_conflict"] == "user_id,contact_id"
        assert "resolution=merge-duplicates" in rec.last.headers["Prefer"]

    @pytest.mark.asyncio
    async def test_update_uses_patch_with_filters(self):
        rec = Recorder()
        await _client(rec).update("risk_alerts", {"is_read": True}, filters={"id": "a1", "user_id": "u1"})
        assert rec.last.method == "PATCH"
        assert rec.last.url.params["id"] == "eq.a1"
        assert json.loads(rec.last.content) == {"is_read": True}

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_list(self):
        client = _client(lambda request: httpx.Response(204))
        assert await client.insert("risk_alerts", {"risk_score": 75}) == []

    @pytest.mark.asyncio
    async def test_http_error_raises_platform_error(self):
        rec = Recorder(status_code=409, body={"message": "duplicate key value"})
        with pytest.raises(PlatformError) as exc_info:
            await _client(rec).insert("risk_alerts", {})
        assert exc_info.value.status_code == 409
        assert "duplicate key value" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises_platform_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PlatformError) as exc_info:
            await _client(handler).rpc("calculate_client_risk_score", {})
        assert exc_info.value.status_code is None


class TestGetUser:
    @pytest.mark.asyncio
    async def test_returns_token_owner(self):
        rec = Recorder(body={"id": "u1", "email": "agente@proptor.test"})
        user = await _client(rec).get_user()
        assert user["id"] == "u1"
        assert rec.last.method == "GET"
        assert rec.last.url.path == "/auth/v1/user"
        assert rec.last.headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_no_token_skips_request(self):
        rec = Recorder()
        with pytest.raises(PlatformError) as exc_info:
            await _client(rec, access_token=None).get_user()
        assert exc_info.value.status_code == 401
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        rec = Recorder(status_code=401, body={"message": "invalid JWT"})
        with pytest.raises(PlatformError) as exc_info:
            await _client(rec).get_user()
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_response_without_id(self):
        rec = Recorder(body={"email": "agente@proptor.test"})
        with pytest.raises(PlatformError) as exc_info:
            await _client(rec).get_user()
        assert exc_info.value.status_code == 401
