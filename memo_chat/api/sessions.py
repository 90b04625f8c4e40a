"""/chat/sessions エンドポイント（本人のチャットセッションの一覧・取得・作成・改名・削除）。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from memo_chat import chat_sessions, schemas
from memo_chat.deps import get_current_user_id, get_db_dep
from memo_chat.models import ChatMessage, ChatSession


router = APIRouter(prefix="/chat/sessions", tags=["chat_sessions"])


def _to_session_item(s: ChatSession) -> schemas.ChatSessionItem:
    model = s.model
    return schemas.ChatSessionItem(
        id=s.id,
        user_id=s.user_id,
        title=s.title,
        model_id=s.model_id,
        category_id=s.category_id,
        created_at=s.created_at,
        updated_at=s.updated_at,
        ai_models=(schemas.ModelSummary(name=model.name, provider=model.provider) if model is not None else None),
    )


def _to_message_item(m: ChatMessage) -> schemas.ChatMessageItem:
    return schemas.ChatMessageItem(
        id=m.id,
        session_id=m.session_id,
        role=m.role,
        content=m.content,
        model_id=m.model_id,
        memo_ids=m.memo_ids,
        created_at=m.created_at,
    )


@router.get("", response_model=schemas.ChatSessionListResponse)
def list_sessions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_dep),
):
    """セッション一覧を取得（更新日時の新しい順）。"""
    rows = chat_sessions.list_sessions(db, user_id=user_id, limit=limit, offset=offset)
    return schemas.ChatSessionListResponse(sessions=[_to_session_item(s) for s in rows])


@router.post("", response_model=schemas.ChatSessionResponse)
def create_session(
    request: schemas.ChatSessionCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_dep),
):
    """メッセージを持たない空のセッションを作成。"""
    row = chat_sessions.create_empty_session(db, user_id=user_id, title=request.title, model_id=request.model_id)
    return schemas.ChatSessionResponse(session=_to_session_item(row))


@router.get("/{session_id}", response_model=schemas.ChatSessionDetailResponse)
def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_dep),
):
    """セッションとメッセージ（作成順）を取得。"""
    row, messages = chat_sessions.get_session_with_messages(db, user_id=user_id, session_id=session_id)
    return schemas.ChatSessionDetailResponse(
        session=_to_session_item(row),
        messages=[_to_message_item(m) for m in messages],
    )


@router.put("/{session_id}", response_model=schemas.ChatSessionResponse)
def update_session(
    session_id: str,
    request: schemas.ChatSessionUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_dep),
):
    """セッションタイトルを変更。"""
    row = chat_sessions.rename_session(db, user_id=user_id, session_id=session_id, title=request.title)
    return schemas.ChatSessionResponse(session=_to_session_item(row))


@router.delete("/{session_id}", response_model=schemas.MessageResponse)
def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db_dep),
):
    """セッションを削除（メッセージも削除される）。"""
    chat_sessions.delete_session(db, user_id=user_id, session_id=session_id)
    return schemas.MessageResponse(message="채팅 세션이 삭제되었습니다")
