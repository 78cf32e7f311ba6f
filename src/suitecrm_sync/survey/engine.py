"""Survey engine access -- completed responses and question metadata.

Provides:
- SurveyEngine: abstract interface the orchestrator reads responses through
- RemoteControlSurveyEngine: LimeSurvey RemoteControl 2 (JSON-RPC) client
- collapse_multiple_choice(): folds ``CODE[SQ]`` checkbox columns into a list
"""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from src.suitecrm_sync.errors import ConfigurationError, SurveyEngineError, TransportError
from src.suitecrm_sync.mappings.schemas import QuestionInfo

logger = structlog.get_logger(__name__)

# Question types whose answers arrive as one Y/empty column per subquestion
MULTIPLE_CHOICE_TYPES = frozenset({"M", "P"})


class SurveyEngine(ABC):
    """Abstract source of completed responses."""

    @abstractmethod
    async def get_response(self, survey_id: int, response_id: int) -> dict[str, Any]:
        """Question code -> answer for one response."""
        ...

    @abstractmethod
    async def get_questions(self, survey_id: int) -> dict[int, QuestionInfo]:
        """Question id -> metadata for the survey's top-level questions."""
        ...


def collapse_multiple_choice(
    response: dict[str, Any], questions: dict[int, QuestionInfo]
) -> dict[str, Any]:
    """Add a list answer for multiple-choice questions exported per subquestion.

    ``{"Q5[SQ001]": "Y", "Q5[SQ002]": ""}`` gains ``"Q5": ["SQ001"]``.
    Comment columns (``Q5[SQ001comment]``) are ignored.
    """
    collapsed = dict(response)
    for question in questions.values():
        if question.type not in MULTIPLE_CHOICE_TYPES or question.code in response:
            continue
        prefix = f"{question.code}["
        chosen = [
            key[len(prefix):-1]
            for key, value in response.items()
            if key.startswith(prefix)
            and key.endswith("]")
            and not key.endswith("comment]")
            and str(value).strip().upper() == "Y"
        ]
        if chosen:
            collapsed[question.code] = chosen
    return collapsed


class RemoteControlSurveyEngine(SurveyEngine):
    """LimeSurvey RemoteControl 2 JSON-RPC client.

    Opens a session per call and releases it afterwards.

    Args:
        rpc_url: .../index.php/admin/remotecontrol
        username: LimeSurvey user with export permission.
        password: Password of that user.
        transport: Optional httpx transport (tests).
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        rpc_url: str,
        username: str,
        password: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._username = username
        self._password = password
        self._transport = transport
        self._request_id = 0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.TIMEOUT, transport=self._transport)

    async def _call(self, client: httpx.AsyncClient, method: str, *params: Any) -> Any:
        self._request_id += 1
        try:
            response = await client.post(
                self._rpc_url,
                json={"method": method, "params": list(params), "id": self._request_id},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("survey_engine.transport_error", method=method, error=str(exc))
            raise TransportError(f"RemoteControl request failed: {exc}") from exc

        body = response.json()
        if body.get("error"):
            raise SurveyEngineError(f"RemoteControl {method} failed: {body['error']}")
        result = body.get("result")
        if isinstance(result, dict) and "status" in result and len(result) == 1:
            raise SurveyEngineError(f"RemoteControl {method} failed: {result['status']}")
        return result

    async def _with_session(self, method: str, *params: Any) -> Any:
        if not self._username:
            raise ConfigurationError("LimeSurvey RemoteControl credentials are not configured")
        async with self._client() as client:
            session_key = await self._call(client, "get_session_key", self._username, self._password)
            if not isinstance(session_key, str):
                raise SurveyEngineError("RemoteControl login failed")
            try:
                return await self._call(client, method, session_key, *params)
            finally:
                await self._call(client, "release_session_key", session_key)

    async def get_questions(self, survey_id: int) -> dict[int, QuestionInfo]:
        rows = await self._with_session("list_questions", survey_id)
        questions: dict[int, QuestionInfo] = {}
        for row in rows or []:
            if int(row.get("parent_qid") or 0) != 0:
                continue
            qid = int(row["qid"])
            questions[qid] = QuestionInfo(
                qid=qid,
                code=row.get("title") or row.get("code") or str(qid),
                type=row.get("type") or "S",
                text=row.get("question") or "",
            )
        return questions

    async def get_response(self, survey_id: int, response_id: int) -> dict[str, Any]:
        encoded = await self._with_session(
            "export_responses",
            survey_id,
            "json",
            None,
            "complete",
            "code",
            "short",
            response_id,
            response_id,
        )
        try:
            payload = json.loads(base64.b64decode(encoded))
        except (TypeError, ValueError) as exc:
            raise SurveyEngineError(f"Unreadable export for response {response_id}") from exc

        for entry in payload.get("responses", []):
            # Older exports wrap each row as {"<id>": {...}}
            if len(entry) == 1:
                (inner,) = entry.values()
                if isinstance(inner, dict):
                    entry = inner
            if str(entry.get("id")) == str(response_id):
                return entry
        raise SurveyEngineError(f"Response {response_id} not found in survey {survey_id}")
