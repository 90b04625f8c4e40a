"""API リクエスト/レスポンスの Pydantic モデル。"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from memo_chat import defaults


class ChatRequest(BaseModel):
    """/chat, /chat/stream 用リクエスト（未知のフィールドは拒否する）。"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, protected_namespaces=())

    message: str = Field(min_length=1, max_length=defaults.MAX_MESSAGE_CHARS)
    model_id: str = Field(alias="modelId", min_length=1)
    selected_memos: List[str] = Field(
        default_factory=list, alias="selectedMemos", max_length=defaults.MAX_SELECTED_MEMOS
    )
    selected_tags: List[str] = Field(default_factory=list, alias="selectedTags", max_length=defaults.MAX_SELECTED_TAGS)
    selected_category: Optional[str] = Field(default=None, alias="selectedCategory")
    # クライアントが送る複数カテゴリ指定（サーバ側では保存に使わない）
    selected_categories: List[str] = Field(default_factory=list, alias="selectedCategories")
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("model_id")
    @classmethod
    def _validate_model_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("modelId must not be blank")
        return v

    @field_validator("session_id", "selected_category")
    @classmethod
    def _empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v or None


class ChatResponse(BaseModel):
    """/chat（非ストリーミング）用レスポンス。"""

    response: str
    session_id: str = Field(serialization_alias="sessionId")


class ModelSummary(BaseModel):
    """セッションに紐づくモデルの表示情報。"""

    name: str
    provider: str


class ChatSessionItem(BaseModel):
    """チャットセッション1件。"""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    user_id: str
    title: str
    model_id: str
    category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    ai_models: Optional[ModelSummary] = None


class ChatMessageItem(BaseModel):
    """チャットメッセージ1件。"""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    session_id: str
    role: str
    content: str
    model_id: Optional[str] = None
    memo_ids: Optional[List[str]] = None
    created_at: datetime


class ChatSessionListResponse(BaseModel):
    sessions: List[ChatSessionItem]


class ChatSessionResponse(BaseModel):
    session: ChatSessionItem


class ChatSessionDetailResponse(BaseModel):
    session: ChatSessionItem
    messages: List[ChatMessageItem]


class ChatSessionCreateRequest(BaseModel):
    """空セッション作成用リクエスト。"""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    title: str = Field(min_length=1)
    model_id: str = Field(alias="modelId", min_length=1)


class ChatSessionUpdateRequest(BaseModel):
    """セッションタイトル変更用リクエスト。"""

    title: str = Field(min_length=1)


class MessageResponse(BaseModel):
    message: str


class AiModelItem(BaseModel):
    """モデルカタログ1件。"""

    id: str
    name: str
    provider: str
    description: str
    is_free: bool
    max_tokens: int
    context_length: int


class AiModelListResponse(BaseModel):
    models: List[AiModelItem]


class AiModelResponse(BaseModel):
    model: AiModelItem
