"""ORM モデル定義。"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from memo_chat import defaults
from memo_chat.db import Base


class User(Base):
    """利用者。認証基盤は外部にあり、ここではAPIトークン→利用者IDの解決だけを担う。"""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String)
    name: Mapped[Optional[str]] = mapped_column(String)
    api_token: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Category(Base):
    """メモのカテゴリ（このサービスでは参照のみ）。"""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Memo(Base):
    """メモ（このサービスでは参照のみ）。"""

    __tablename__ = "memos"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # タグは順序なし集合として扱う（JSON配列で保存）
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, default=list)
    category_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("categories.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class AiModel(Base):
    """モデルカタログ（上流サービスのモデルID単位）。"""

    __tablename__ = "ai_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=defaults.DEFAULT_MODEL_MAX_TOKENS)
    context_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ChatSession(Base):
    """チャットセッション。所有者（user_id）は作成後に変わらない。"""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    model_id: Mapped[str] = mapped_column(String, ForeignKey("ai_models.id"), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("categories.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    model: Mapped[Optional["AiModel"]] = relationship("AiModel")
    messages: Mapped[List["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    """チャットメッセージ（セッションに従属）。"""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False)  # user | assistant | system
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    model_id: Mapped[Optional[str]] = mapped_column(String)
    memo_ids: Mapped[Optional[List[str]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="messages")


def _provider_of(model_id: str) -> str:
    return model_id.split("/", 1)[0] if "/" in model_id else "unknown"


def ensure_initial_models(db: Session) -> int:
    """
    モデルカタログが空なら、キュレーション済みモデル一覧を投入する。

    カタログ同期ジョブは別系統のため、ここでは初回起動時の最小限の行だけ作る。
    投入した件数を返す。
    """
    if db.query(AiModel.id).first() is not None:
        return 0

    rows: list[AiModel] = []
    for model_id, name in defaults.CURATED_FREE_MODELS:
        rows.append(AiModel(id=model_id, name=name, provider=_provider_of(model_id), is_free=True))
    for model_id, name in defaults.CURATED_PAID_MODELS:
        rows.append(AiModel(id=model_id, name=name, provider=_provider_of(model_id), is_free=False))
    db.add_all(rows)
    db.flush()
    return len(rows)
