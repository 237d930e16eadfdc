"""
Shared test fixtures for the Proptor risk detection test suite.
"""

import os
import re
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

# ── Project paths ──
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
API_DIR = os.path.join(PROJECT_ROOT, "serving", "api")
CONFIG_DIR = os.path.join(PROJECT_ROOT, "config")


def _ensure_path(path):
    if path not in sys.path:
        sys.path.insert(0, path)


# Ensure API and src dirs are on path so test-module-level imports work
_ensure_path(API_DIR)
_ensure_path(SRC_DIR)

from models import UserSession  # noqa: E402
from pacing import RequestPacer  # noqa: E402
from platform_client import PlatformError  # noqa: E402
from risk_service import RiskDetectionService  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
EMBED_RE = re.compile(r"contacts!inner\(([^)]*)\)")


def _matches(row, filters):
    return all(row.get(column) == value for column, value in filters.items())


class FakePlatform:
    """
    In-memory stand-in for the hosted platform.

    Mirrors the PlatformClient coroutine interface: upserts merge on the
    conflict key, inner joins on ``contacts`` drop rows without a contact,
    and ``created_at`` increases by one second per insert.
    """

    def __init__(self):
        self.tables = {
            "contacts": [],
            "client_risk_metrics": [],
            "risk_alerts": [],
            "recovery_actions": [],
        }
        self.risk_results = {}
        self.fail_on = set()
        self.calls = []
        self.rpc_hook = None
        self.token = None
        self.users = {"token-1": "user-1"}
        self._seq = 0

    def with_token(self, access_token):
        self.token = access_token
        return self

    def add_contact(self, contact_id, full_name, sales_stage=None, user_id="user-1"):
        self.tables["contacts"].append({
            "id": contact_id,
            "user_id": user_id,
            "full_name": full_name,
            "email": f"{contact_id}@example.com",
            "phone": None,
            "sales_stage": sales_stage,
            "status": "active",
            "created_at": self._stamp(),
        })

    def _stamp(self):
        self._seq += 1
        return (BASE_TIME + timedelta(seconds=self._seq)).isoformat()

    def _check(self, method, table):
        self.calls.append((method, table))
        if (method, table) in self.fail_on:
            raise PlatformError(f"{method} {table} failed", status_code=500)

    async def get_user(self):
        self._check("get", "auth_user")
        user_id = self.users.get(self.token)
        if user_id is None:
            raise PlatformError("invalid JWT", status_code=401)
        return {"id": user_id, "email": f"{user_id}@example.com"}

    async def rpc(self, function, params):
        self._check("rpc", function)
        if self.rpc_hook:
            self.rpc_hook(params)
        result = self.risk_results.get(params["contact_uuid"])
        if isinstance(result, Exception):
            raise result
        return [] if result is None else [dict(result)]

    async def insert(self, table, row):
        self._check("insert", table)
        record = {"id": str(uuid4()), "created_at": self._stamp(), **row}
        if table == "risk_alerts":
            record.setdefault("is_read", False)
            record.setdefault("is_resolved", False)
            record.setdefault("resolved_at", None)
        self.tables[table].append(record)
        return [dict(record)]

    async def upsert(self, table, row, on_conflict):
        self._check("upsert", table)
        key = tuple(row[column] for column in on_conflict)
        for existing in self.tables[table]:
            if tuple(existing.get(column) for column in on_conflict) == key:
                existing.update(row)
                return [dict(existing)]
        record = {"id": str(uuid4()), "created_at": self._stamp(), **row}
        self.tables[table].append(record)
        return [dict(record)]

    async def update(self, table, values, filters):
        self._check("update", table)
        matched = [row for row in self.tables[table] if _matches(row, filters)]
        for row in matched:
            row.update(values)
        return [dict(row) for row in matched]

    async def select(self, table, columns="*", filters=None, order=None):
        self._check("select", table)
        rows = [dict(row) for row in self.tables[table] if _matches(row, filters or {})]

        embed = EMBED_RE.search(columns)
        if embed:
            fields = [f.strip() for f in embed.group(1).split(",")]
            contacts = {c["id"]: c for c in self.tables["contacts"]}
            joined = []
            for row in rows:
                contact = contacts.get(row["contact_id"])
                if contact is None:
                    continue
                row["contacts"] = {f: contact.get(f) for f in fields}
                joined.append(row)
            rows = joined

        if order:
            column, descending = order
            rows.sort(key=lambda r: r[column], reverse=descending)
        return rows


def make_result(risk_score, **overrides):
    """A calculate_client_risk_score row with sensible defaults."""
    result = {
        "risk_score": risk_score,
        "risk_factors": [f"{risk_score} puntos de riesgo"],
        "recommendations": ["Llamada prioritaria en próximas 24 horas"],
        "last_contact_days": 9,
        "interaction_frequency": 1.5,
        "engagement_score": max(0, 100 - risk_score),
    }
    result.update(overrides)
    return result


@pytest.fixture
def fake_platform():
    platform = FakePlatform()
    platform.add_contact("c1", "Ana Torres", sales_stage="negociacion")
    platform.add_contact("c2", "Luis Paredes", sales_stage="seguimiento_inicial")
    return platform


@pytest.fixture
def session():
    return UserSession(user_id="user-1", access_token="token-1")


@pytest.fixture
def service(fake_platform, session):
    """Service with pacing disabled so bulk passes run instantly."""
    return RiskDetectionService(fake_platform, session, pacer=RequestPacer(0))


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-1"}
