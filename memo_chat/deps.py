"""依存オブジェクトの生成。"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from memo_chat.chat_service import ChatService
from memo_chat.config import get_config_store
from memo_chat.db import get_db
from memo_chat.errors import AuthenticationRequired
from memo_chat.llm_client import LlmClient
from memo_chat.models import User


logger = logging.getLogger(__name__)

_chat_service: ChatService | None = None

security = HTTPBearer(auto_error=False)


def get_llm_client() -> LlmClient:
    """ConfigStoreからLlmClientを生成。"""
    cfg = get_config_store().config
    return LlmClient(
        api_key=cfg.openrouter_api_key,
        base_url=cfg.openrouter_base_url,
        app_url=cfg.app_url,
        app_title=cfg.app_title,
        timeout_seconds=cfg.upstream_timeout_seconds,
    )


def get_chat_service() -> ChatService:
    """ChatServiceのシングルトンを取得。"""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(llm_client=get_llm_client())
    return _chat_service


def reset_chat_service() -> None:
    """ChatServiceをリセット（設定変更時などに使用）。"""
    global _chat_service
    if _chat_service is not None:
        _chat_service.llm_client.close()
    _chat_service = None


def get_db_dep() -> Iterator[Session]:
    """DBセッションのFastAPI依存性注入用。"""
    yield from get_db()


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db_dep),
) -> str:
    """Bearerトークンを利用者に解決し、利用者IDを返す。"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    user_id = db.query(User.id).filter(User.api_token == credentials.credentials).scalar()
    if user_id is None:
        logger.warning("Authentication failed: invalid token")
        raise AuthenticationRequired()
    return str(user_id)
