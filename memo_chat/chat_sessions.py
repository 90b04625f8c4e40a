"""
チャットセッションとメッセージの永続化

- resolve_session: 既存セッションの読み込み（本人のもののみ）か、新規作成
- メッセージ保存: user 行、空の assistant 行（プレースホルダ）、最終内容の1回だけの更新
- セッション一覧/詳細/改名/削除（APIから利用）

すべての読み書きは user_id で所有者を絞り込む。
複数ステップの書き込みをトランザクションでまとめることはしない（各操作は独立）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from memo_chat import defaults
from memo_chat.db import session_scope
from memo_chat.errors import SessionCreateFailed, SessionNotFound
from memo_chat.models import ChatMessage, ChatSession


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    """セッション外でも使えるChatSessionのスナップショット。"""

    id: str
    title: str
    model_id: str
    category_id: Optional[str]
    created: bool


def new_session_id() -> str:
    return f"session_{uuid4().hex}"


def new_message_id() -> str:
    return f"msg_{uuid4().hex}"


def _truncate_title(text: str) -> str:
    return text[: defaults.SESSION_TITLE_MAX_CHARS] + defaults.SESSION_TITLE_SUFFIX


def derive_session_title(first_message: str) -> str:
    """最初のメッセージからタイトルを作る（50文字を超えたら切り詰めて "..." を付ける）。"""
    if len(first_message) > defaults.SESSION_TITLE_MAX_CHARS:
        return _truncate_title(first_message)
    return first_message


def _to_handle(row: ChatSession, *, created: bool) -> SessionHandle:
    return SessionHandle(
        id=row.id,
        title=row.title,
        model_id=row.model_id,
        category_id=row.category_id,
        created=created,
    )


def get_owned_session(db: Session, user_id: str, session_id: str) -> ChatSession:
    """本人のセッションを取得する。見つからなければ SessionNotFound。"""
    row = db.query(ChatSession).filter(ChatSession.id == session_id, ChatSession.user_id == user_id).one_or_none()
    if row is None:
        raise SessionNotFound()
    return row


def resolve_session(
    db: Session,
    *,
    user_id: str,
    session_id: Optional[str],
    first_message: str,
    model_id: str,
    category_id: Optional[str] = None,
) -> SessionHandle:
    """
    既存セッションを読み込むか、新しいセッションを作成してハンドルを返す。

    既存セッションの updated_at 更新は呼び出し側が touch_session で非同期に行う。
    """
    if session_id:
        return _to_handle(get_owned_session(db, user_id, session_id), created=False)

    now = datetime.utcnow()
    row = ChatSession(
        id=new_session_id(),
        user_id=user_id,
        title=derive_session_title(first_message),
        model_id=model_id,
        created_at=now,
        updated_at=now,
    )
    if category_id:
        row.category_id = category_id
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("セッション作成に失敗しました", exc_info=exc)
        raise SessionCreateFailed() from exc
    logger.info("chat session created", extra={"session_id": row.id, "user_id": user_id})
    return _to_handle(row, created=True)


def touch_session(session_id: str, user_id: str) -> None:
    """セッションの updated_at を現在時刻にする（失敗してもターンは継続）。"""
    try:
        with session_scope() as db:
            db.query(ChatSession).filter(ChatSession.id == session_id, ChatSession.user_id == user_id).update(
                {ChatSession.updated_at: datetime.utcnow()}, synchronize_session=False
            )
    except Exception as exc:  # noqa: BLE001
        logger.warning("セッション更新時刻の更新に失敗しました", exc_info=exc)


# --- メッセージ ---


def insert_user_message(
    db: Session,
    *,
    session_id: str,
    content: str,
    model_id: str,
    memo_ids: Sequence[str],
) -> str:
    """user メッセージを保存してIDを返す。"""
    message_id = new_message_id()
    db.add(
        ChatMessage(
            id=message_id,
            session_id=session_id,
            role="user",
            content=content,
            model_id=model_id,
            memo_ids=list(memo_ids),
            created_at=datetime.utcnow(),
        )
    )
    db.flush()
    return message_id


def insert_assistant_placeholder(db: Session, *, session_id: str, model_id: str) -> str:
    """内容が空の assistant メッセージを保存してIDを返す（最終内容は後で1回だけ書く）。"""
    message_id = new_message_id()
    db.add(
        ChatMessage(
            id=message_id,
            session_id=session_id,
            role="assistant",
            content="",
            model_id=model_id,
            created_at=datetime.utcnow(),
        )
    )
    db.flush()
    return message_id


def finalize_assistant_message(db: Session, *, message_id: str, content: str) -> bool:
    """assistant メッセージの内容を最終テキストで置き換える。更新できたら True。"""
    updated = (
        db.query(ChatMessage)
        .filter(ChatMessage.id == message_id, ChatMessage.role == "assistant")
        .update({ChatMessage.content: content}, synchronize_session=False)
    )
    return bool(updated)


def retitle_session_from_reply(db: Session, *, session_id: str, user_id: str, reply: str) -> bool:
    """
    応答が20文字を超える場合だけ、セッションタイトルを応答の冒頭50文字 + "..." にする。

    初回以降のターンでもタイトルは最新の応答に追従する。
    """
    if len(reply) <= defaults.RETITLE_MIN_REPLY_CHARS:
        return False
    updated = (
        db.query(ChatSession)
        .filter(ChatSession.id == session_id, ChatSession.user_id == user_id)
        .update(
            {ChatSession.title: _truncate_title(reply), ChatSession.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    return bool(updated)


# --- セッションCRUD（API用） ---


def list_sessions(db: Session, *, user_id: str, limit: int = 20, offset: int = 0) -> List[ChatSession]:
    """本人のセッションを更新日時の新しい順に返す。"""
    return (
        db.query(ChatSession)
        .options(joinedload(ChatSession.model))
        .filter(ChatSession.user_id == user_id)
        .order_by(ChatSession.updated_at.desc(), ChatSession.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_session_with_messages(db: Session, *, user_id: str, session_id: str) -> Tuple[ChatSession, List[ChatMessage]]:
    """本人のセッションとメッセージ（作成順）を返す。"""
    row = get_owned_session(db, user_id, session_id)
    messages = (
        db.query(ChatMessage)
        .filter(ChatMessage.session_id == row.id)
        .order_by(ChatMessage.created_at.asc())
        .all()
    )
    return row, messages


def create_empty_session(db: Session, *, user_id: str, title: str, model_id: str) -> ChatSession:
    """メッセージを持たないセッションを作成する。"""
    now = datetime.utcnow()
    row = ChatSession(
        id=new_session_id(),
        user_id=user_id,
        title=title,
        model_id=model_id,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("セッション作成に失敗しました", exc_info=exc)
        raise SessionCreateFailed() from exc
    return row


def rename_session(db: Session, *, user_id: str, session_id: str, title: str) -> ChatSession:
    """セッションタイトルを変更する。"""
    row = get_owned_session(db, user_id, session_id)
    row.title = title
    row.updated_at = datetime.utcnow()
    db.commit()
    return row


def delete_session(db: Session, *, user_id: str, session_id: str) -> None:
    """セッションを削除する（メッセージも連鎖削除される）。"""
    row = get_owned_session(db, user_id, session_id)
    db.delete(row)
    db.commit()
    logger.info("chat session deleted", extra={"session_id": session_id, "user_id": user_id})
