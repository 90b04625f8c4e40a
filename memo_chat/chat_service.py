"""
チャットのターン処理（ストリーム中継）

1ターンは2段階で処理する。

1. open_turn: ストリームを開く前の処理。失敗はすべて ChatError として即時に返す。
   モデル確認 → メモ文脈の組み立て → セッション解決 → user メッセージ保存 → プロンプト構築
2. relay: イベント列の生成。開始後の失敗はHTTPエラーにせず、フォールバック応答で吸収する。
   session イベント → 空の assistant 行を保存 → 上流の差分を受信順に content で転送
   → 最終内容を保存 → done イベント

relay の呼び出し側は2種類ある。
- stream_events: SSE（data: <JSON>\\n\\n）として逐次返す
- collect: 全イベントを読み切り、本文を連結して返す（非ストリーミングAPI）

ターンごとの可変状態は ChatTurn.state（RelayState）にだけ持ち、リクエスト間で共有しない。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError

from memo_chat import defaults, schemas
from memo_chat.chat_sessions import (
    SessionHandle,
    finalize_assistant_message,
    insert_assistant_placeholder,
    insert_user_message,
    resolve_session,
    retitle_session_from_reply,
    touch_session,
)
from memo_chat.db import session_scope
from memo_chat.errors import MessageSaveFailed, ModelNotFound, UpstreamError
from memo_chat.llm_client import LlmClient
from memo_chat.memo_context import build_memo_context
from memo_chat.models import AiModel


logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"


class RelayPhase(str, Enum):
    """中継の状態。"""

    IDLE = "idle"
    SESSION_READY = "session_ready"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class ModelSnapshot:
    """セッション外でも使えるAiModelのスナップショット。"""

    id: str
    name: str
    provider: str
    max_tokens: int


@dataclass
class RelayState:
    """1ターン分の中継状態（リクエストスコープ）。"""

    phase: RelayPhase = RelayPhase.IDLE
    assistant_message_id: Optional[str] = None
    reply_parts: List[str] = field(default_factory=list)
    forwarded: int = 0

    @property
    def reply_text(self) -> str:
        return "".join(self.reply_parts)


@dataclass
class ChatTurn:
    """open_turn が組み立てた1ターン分の入力と状態。"""

    user_id: str
    session: SessionHandle
    model: ModelSnapshot
    message: str
    memo_ids: List[str]
    prompt: List[Dict[str, str]]
    max_tokens: int
    state: RelayState = field(default_factory=RelayState)


@dataclass(frozen=True)
class ChatReply:
    """collect の結果。"""

    response: str
    session_id: str


def _json_dumps(payload: Any) -> str:
    """イベント用にJSONをダンプする（ハングル等を保持）。"""
    return json.dumps(payload, ensure_ascii=False)


def format_sse(event: Dict[str, Any]) -> str:
    """SSE（Server-Sent Events）形式の1メッセージを構築する。"""
    return f"data: {_json_dumps(event)}\n\n"


def build_prompt(message: str, memo_context: str) -> List[Dict[str, str]]:
    """固定の system 指示と、メモ文脈を後置した user メッセージを組み立てる。"""
    return [
        {"role": "system", "content": defaults.SYSTEM_PROMPT},
        {"role": "user", "content": f"{message}{memo_context}"},
    ]


def build_fallback_reply(turn: ChatTurn) -> str:
    """上流が使えなかったときに返す代替応答。"""
    return defaults.FALLBACK_REPLY_TEMPLATE.format(
        model_name=turn.model.name,
        provider=turn.model.provider,
        message=turn.message,
        memo_count=len(turn.memo_ids),
    )


def _load_active_model(model_id: str) -> ModelSnapshot:
    with session_scope() as db:
        row = db.query(AiModel).filter(AiModel.id == model_id, AiModel.is_active.is_(True)).one_or_none()
        if row is None:
            raise ModelNotFound()
        return ModelSnapshot(id=row.id, name=row.name, provider=row.provider, max_tokens=int(row.max_tokens))


class ChatService:
    """チャットのターン処理を統括する。"""

    def __init__(self, llm_client: LlmClient):
        self.llm_client = llm_client

    def open_turn(
        self,
        user_id: str,
        request: schemas.ChatRequest,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ChatTurn:
        """
        ストリーム開始前の処理をまとめて行う。

        - ModelNotFound / ContextFetchFailed / SessionNotFound / SessionCreateFailed / MessageSaveFailed
          はここで送出され、イベントは1つも送られない
        - 既存セッションの updated_at 更新はバックグラウンドで行う
        """
        model = _load_active_model(request.model_id)

        with session_scope() as db:
            memo_context = build_memo_context(db, user_id, request.selected_memos, request.selected_tags)

        with session_scope() as db:
            session = resolve_session(
                db,
                user_id=user_id,
                session_id=request.session_id,
                first_message=request.message,
                model_id=request.model_id,
                category_id=request.selected_category,
            )

        if not session.created:
            if background_tasks is not None:
                background_tasks.add_task(touch_session, session.id, user_id)
            else:
                touch_session(session.id, user_id)

        try:
            with session_scope() as db:
                insert_user_message(
                    db,
                    session_id=session.id,
                    content=request.message,
                    model_id=request.model_id,
                    memo_ids=request.selected_memos,
                )
        except SQLAlchemyError as exc:
            logger.error("user メッセージの保存に失敗しました", exc_info=exc)
            raise MessageSaveFailed() from exc

        return ChatTurn(
            user_id=user_id,
            session=session,
            model=model,
            message=request.message,
            memo_ids=list(request.selected_memos),
            prompt=build_prompt(request.message, memo_context),
            max_tokens=min(model.max_tokens, defaults.UPSTREAM_MAX_TOKENS_CAP),
        )

    def _save_placeholder(self, turn: ChatTurn) -> None:
        try:
            with session_scope() as db:
                turn.state.assistant_message_id = insert_assistant_placeholder(
                    db, session_id=turn.session.id, model_id=turn.model.id
                )
        except Exception as exc:  # noqa: BLE001
            logger.error("assistant プレースホルダの保存に失敗しました", exc_info=exc)

    def _save_final(self, turn: ChatTurn, content: str, *, retitle: bool) -> None:
        """最終内容を assistant 行へ1回だけ書き込み、必要ならタイトルを更新する。"""
        message_id = turn.state.assistant_message_id
        if message_id is not None:
            try:
                with session_scope() as db:
                    if not finalize_assistant_message(db, message_id=message_id, content=content):
                        logger.warning("assistant メッセージが見つかりません", extra={"message_id": message_id})
            except Exception as exc:  # noqa: BLE001
                logger.error("assistant メッセージの保存に失敗しました", exc_info=exc)
        if retitle:
            try:
                with session_scope() as db:
                    retitle_session_from_reply(db, session_id=turn.session.id, user_id=turn.user_id, reply=content)
            except Exception as exc:  # noqa: BLE001
                logger.error("セッションタイトルの更新に失敗しました", exc_info=exc)

    def relay(self, turn: ChatTurn) -> Iterator[Dict[str, Any]]:
        """
        1ターン分のイベント列を生成する。

        順序: session → content*（上流の受信順）→ done（最後）
        クライアント切断（GeneratorExit）では以降の保存を行わない。
        """
        state = turn.state
        try:
            yield {"type": "session", "sessionId": turn.session.id}
            state.phase = RelayPhase.SESSION_READY

            # 以後どこで失敗しても、会話履歴には user/assistant の両方が残る
            self._save_placeholder(turn)

            state.phase = RelayPhase.STREAMING
            deltas = self.llm_client.stream_chat_completion(
                model=turn.model.id,
                messages=turn.prompt,
                max_tokens=turn.max_tokens,
                temperature=defaults.UPSTREAM_TEMPERATURE,
            )
            try:
                for delta in deltas:
                    state.reply_parts.append(delta)
                    state.forwarded += 1
                    yield {"type": "content", "content": delta}
            except UpstreamError as exc:
                logger.error(
                    "stream chat failed",
                    extra={"status_code": exc.status_code, "body": exc.body, "forwarded": state.forwarded},
                    exc_info=exc,
                )
                if state.forwarded == 0:
                    fallback = build_fallback_reply(turn)
                    yield {"type": "content", "content": fallback}
                    self._save_final(turn, fallback, retitle=False)
                    state.phase = RelayPhase.FAILED
                    yield {"type": "done"}
                    return
            finally:
                # 切断時もここで上流レスポンスを閉じる
                deltas.close()

            reply_text = state.reply_text
            self._save_final(turn, reply_text, retitle=True)
            state.phase = RelayPhase.COMPLETED
            yield {"type": "done"}
        except GeneratorExit:
            state.phase = RelayPhase.ABORTED
            logger.info(
                "client cancelled stream",
                extra={"session_id": turn.session.id, "forwarded": state.forwarded},
            )
            raise

    def stream_events(self, turn: ChatTurn) -> Iterator[str]:
        """relay のイベントをSSE文字列として返す。"""
        events = self.relay(turn)
        try:
            for event in events:
                yield format_sse(event)
        finally:
            events.close()

    def collect(self, turn: ChatTurn) -> ChatReply:
        """relay を最後まで読み切り、content を連結した応答を返す。"""
        parts: List[str] = []
        for event in self.relay(turn):
            if event["type"] == "content":
                parts.append(event["content"])
        return ChatReply(response="".join(parts), session_id=turn.session.id)
