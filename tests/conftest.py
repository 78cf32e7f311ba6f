"""Shared test fixtures.

Provides:
- In-memory SQLite engine (aiosqlite, StaticPool) with the schema installed
- session_factory / repository / settings stores bound to that engine
- FakeSuiteCRM: httpx.MockTransport-backed SuiteCRM v8 double
- FakeSurveyEngine: in-memory SurveyEngine
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.suitecrm_sync.config import Settings
from src.suitecrm_sync.core.database import Base
from src.suitecrm_sync.crm.client import SuiteCRMClient
from src.suitecrm_sync.mappings.repository import MappingRepository
from src.suitecrm_sync.mappings.schema_manager import SchemaManager
from src.suitecrm_sync.mappings.schemas import QuestionInfo
from src.suitecrm_sync.settings_store import InMemorySettingsStore, PluginSettingModel
from src.suitecrm_sync.survey.engine import SurveyEngine

CRM_URL = "https://crm.test"


# ── Raw SuiteCRM field metadata ────────────────────────────────────────────


LEADS_FIELDS: dict[str, dict[str, Any]] = {
    "id": {"type": "id", "vname": "LBL_ID"},
    "deleted": {"type": "bool"},
    "date_entered": {"type": "datetime"},
    "assigned_user_name": {"type": "relate"},
    "first_name": {"type": "varchar", "vname": "LBL_FIRST_NAME", "len": "100"},
    "last_name": {"type": "varchar", "vname": "LBL_LAST_NAME", "len": "100", "required": True},
    "email1": {"type": "email", "vname": "LBL_EMAIL_ADDRESS"},
    "title": {"type": "varchar", "vname": "LBL_TITLE", "len": "10"},
    "description": {"type": "text", "vname": "LBL_DESCRIPTION"},
    "do_not_call": {"type": "bool", "vname": "LBL_DO_NOT_CALL", "default": "0"},
    "birthdate": {"type": "date", "vname": "LBL_BIRTHDATE"},
    "refered_by": {"type": "varchar", "vname": "LBL_REFERED_BY", "len": "100"},
    "lead_source": {
        "type": "enum",
        "vname": "LBL_LEAD_SOURCE",
        "options": {"Web Site": "Web Site", "Other": "Other"},
    },
}

CASES_FIELDS: dict[str, dict[str, Any]] = {
    "id": {"type": "id"},
    "name": {"type": "name", "vname": "LBL_SUBJECT", "len": "255", "required": True},
    "description": {"type": "text", "vname": "LBL_DESCRIPTION"},
    "priority": {"type": "enum", "vname": "LBL_PRIORITY", "options": {"P1": "High", "P2": "Medium"}},
}


class FakeSuiteCRM:
    """In-process SuiteCRM v8 API double for httpx.MockTransport.

    Records every request; per-module create failures can be injected via
    ``fail_create[module] = (status, body)``.
    """

    def __init__(self) -> None:
        self.fields: dict[str, dict[str, Any]] = {"Leads": LEADS_FIELDS, "Cases": CASES_FIELDS}
        self.token_response: tuple[int, dict[str, Any]] = (
            200,
            {"token_type": "Bearer", "access_token": "token-1", "expires_in": 3600},
        )
        self.fail_create: dict[str, tuple[int, dict[str, Any]]] = {}
        self.fail_fields: dict[str, tuple[int, dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.token_requests = 0
        self.field_requests: Counter[str] = Counter()
        self.created: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/Api/access_token":
            self.token_requests += 1
            status, body = self.token_response
            return httpx.Response(status, json=body)

        if path == "/Api/V8/meta/modules":
            return httpx.Response(
                200,
                json={"data": {"type": "modules", "attributes": {m: {} for m in self.fields}}},
            )

        if path.startswith("/Api/V8/meta/fields/"):
            module = path.rsplit("/", 1)[-1]
            self.field_requests[module] += 1
            if module in self.fail_fields:
                status, body = self.fail_fields[module]
                return httpx.Response(status, json=body)
            if module not in self.fields:
                return httpx.Response(404, json={"errors": [{"detail": f"Module {module} not found"}]})
            return httpx.Response(
                200, json={"data": {"type": "fields", "attributes": self.fields[module]}}
            )

        if path == "/Api/V8/module" and request.method == "POST":
            payload = json.loads(request.content)
            module = payload["data"]["type"]
            if module in self.fail_create:
                status, body = self.fail_create[module]
                return httpx.Response(status, json=body)
            record_id = f"{module.lower()}-{len(self.created) + 1}"
            self.created.append(payload["data"])
            return httpx.Response(
                201,
                json={
                    "data": {
                        "type": module,
                        "id": record_id,
                        "attributes": payload["data"]["attributes"],
                    }
                },
            )

        return httpx.Response(404, json={"errors": [{"detail": "Not found"}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def create_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/Api/V8/module"]


class FakeSurveyEngine(SurveyEngine):
    """In-memory survey engine: questions per survey, responses per id."""

    def __init__(
        self,
        questions: dict[int, dict[int, QuestionInfo]] | None = None,
        responses: dict[tuple[int, int], dict[str, Any]] | None = None,
    ) -> None:
        self.questions = questions or {}
        self.responses = responses or {}
        self.response_calls: list[tuple[int, int]] = []

    async def get_questions(self, survey_id: int) -> dict[int, QuestionInfo]:
        return self.questions.get(survey_id, {})

    async def get_response(self, survey_id: int, response_id: int) -> dict[str, Any]:
        self.response_calls.append((survey_id, response_id))
        return self.responses[(survey_id, response_id)]


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        ADMIN_API_KEY="",
        SUPPORTED_MODULES="Leads,Cases",
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test (schema not installed)."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def installed_engine(engine: AsyncEngine) -> AsyncEngine:
    report = await SchemaManager(engine).install()
    assert report["success"], report
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda c: Base.metadata.create_all(c, tables=[PluginSettingModel.__table__])
        )
    return engine


@pytest.fixture
def session_factory(installed_engine: AsyncEngine):
    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(installed_engine, expire_on_commit=False) as session:
            yield session

    return factory


@pytest.fixture
def repository(session_factory) -> MappingRepository:
    return MappingRepository(session_factory)


@pytest.fixture
def memory_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def fake_crm() -> FakeSuiteCRM:
    return FakeSuiteCRM()


@pytest.fixture
def crm_client(fake_crm: FakeSuiteCRM) -> SuiteCRMClient:
    return SuiteCRMClient(
        base_url=CRM_URL,
        client_id="limesurvey-abc",
        client_secret="s3cret",
        username="admin",
        password="admin-pass",
        transport=fake_crm.transport,
    )


@pytest.fixture
def survey_engine() -> FakeSurveyEngine:
    return FakeSurveyEngine()
