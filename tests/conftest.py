"""
memo_chat テスト共通フィクスチャ

- 一時ディレクトリのSQLiteでアプリを生成する
- 上流（補完API）は httpx.MockTransport に差し替える
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from memo_chat.chat_service import ChatService
from memo_chat.config import Config, ConfigStore
from memo_chat.db import session_scope
from memo_chat.deps import get_chat_service
from memo_chat.llm_client import LlmClient
from memo_chat.main import create_app
from memo_chat.models import AiModel, ChatSession, Memo, User


USER_ID = "user-1"
USER_TOKEN = "token-user-1"
OTHER_USER_ID = "user-2"
OTHER_USER_TOKEN = "token-user-2"
MODEL_ID = "test/model-large"
SMALL_MODEL_ID = "test/model-small"


def sse_frame(content: str) -> str:
    """上流の差分フレームを1つ作る。"""
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n\n"


def sse_body(*deltas: str, done: bool = True, extra_lines: Optional[List[str]] = None) -> bytes:
    """差分列から上流レスポンス本文を作る。"""
    parts = [sse_frame(d) for d in deltas]
    for line in extra_lines or []:
        parts.append(line + "\n\n")
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


def parse_events(text: str) -> List[dict]:
    """SSE本文から data: 行のJSONを順に取り出す。"""
    events = []
    for line in text.splitlines():
        if line.startswith("data: "):
            events.append(json.loads(line[len("data: ") :]))
    return events


def auth(token: str = USER_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}


@dataclass
class Upstream:
    """上流モック。handler を差し替えると応答を変えられる。"""

    handler: Callable[[httpx.Request], httpx.Response]
    requests: List[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def reply(self, *deltas: str, **kwargs) -> None:
        body = sse_body(*deltas, **kwargs)
        self.handler = lambda request: httpx.Response(
            200, content=body, headers={"content-type": "text/event-stream"}
        )

    def fail(self, status_code: int = 500, text: str = "upstream exploded") -> None:
        self.handler = lambda request: httpx.Response(status_code, text=text)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def upstream() -> Upstream:
    up = Upstream(handler=lambda request: httpx.Response(500))
    up.reply("안녕하세요")
    return up


@pytest.fixture
def app(tmp_path, monkeypatch, upstream):
    monkeypatch.setenv("MEMO_CHAT_HOME", str(tmp_path))
    store = ConfigStore(
        Config(
            log_level="WARNING",
            openrouter_api_key="sk-test",
            openrouter_base_url="https://upstream.test/api/v1",
            database_url=f"sqlite:///{tmp_path / 'test.db'}",
        )
    )
    application = create_app(store)
    _seed()
    service = ChatService(
        llm_client=LlmClient(
            api_key="sk-test",
            base_url="https://upstream.test/api/v1",
            app_url="http://localhost:3000",
            app_title="AI Memo Chat",
            transport=httpx.MockTransport(upstream),
        )
    )
    application.dependency_overrides[get_chat_service] = lambda: service
    application.state.test_chat_service = service
    return application


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as c:
        yield c


@pytest.fixture
def chat_service(app) -> ChatService:
    return app.state.test_chat_service


def _seed() -> None:
    base = datetime(2025, 1, 1, 9, 0, 0)
    with session_scope() as db:
        db.add_all(
            [
                User(id=USER_ID, email="user1@example.com", name="User One", api_token=USER_TOKEN),
                User(id=OTHER_USER_ID, email="user2@example.com", name="User Two", api_token=OTHER_USER_TOKEN),
                AiModel(id=MODEL_ID, name="Large Test Model", provider="test", max_tokens=8192),
                AiModel(id=SMALL_MODEL_ID, name="Small Test Model", provider="test", max_tokens=1000),
                AiModel(id="test/retired", name="Retired", provider="test", is_active=False),
            ]
        )
        db.flush()
        db.add_all(
            [
                Memo(id="m1", user_id=USER_ID, title="Groceries", content="Buy milk", tags=["home"],
                     created_at=base),
                Memo(id="m2", user_id=USER_ID, title="Sprint", content="Ship the release", tags=["work", "urgent"],
                     created_at=base + timedelta(minutes=1)),
                Memo(id="m3", user_id=USER_ID, title="Untagged", content="Just a note", tags=[],
                     created_at=base + timedelta(minutes=2)),
                Memo(id="m-other", user_id=OTHER_USER_ID, title="Secret", content="Not yours", tags=["work"],
                     created_at=base + timedelta(minutes=3)),
            ]
        )


def make_session(session_id: str, user_id: str = USER_ID, title: str = "existing") -> None:
    """既存セッションを直接作る。"""
    with session_scope() as db:
        db.add(
            ChatSession(
                id=session_id,
                user_id=user_id,
                title=title,
                model_id=MODEL_ID,
                created_at=datetime(2025, 1, 1),
                updated_at=datetime(2025, 1, 1),
            )
        )
