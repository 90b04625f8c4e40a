"""/models エンドポイント（モデルカタログの参照）。"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from memo_chat import schemas
from memo_chat.deps import get_current_user_id, get_db_dep
from memo_chat.errors import CatalogModelNotFound
from memo_chat.models import AiModel


router = APIRouter(prefix="/models", tags=["models"], dependencies=[Depends(get_current_user_id)])


def _to_item(m: AiModel) -> schemas.AiModelItem:
    return schemas.AiModelItem(
        id=m.id,
        name=m.name,
        provider=m.provider,
        description=m.description,
        is_free=bool(m.is_free),
        max_tokens=int(m.max_tokens),
        context_length=int(m.context_length),
    )


@router.get("", response_model=schemas.AiModelListResponse)
def list_models(
    is_free: Optional[bool] = Query(default=None),
    provider: Optional[str] = Query(default=None),
    limit: int = Query(default=50),
    db: Session = Depends(get_db_dep),
):
    """有効なモデル一覧を名前順で取得（limit は 1..50 に丸める）。"""
    limit = max(1, min(50, limit))
    q = db.query(AiModel).filter(AiModel.is_active.is_(True))
    if is_free is not None:
        q = q.filter(AiModel.is_free == is_free)
    if provider:
        q = q.filter(AiModel.provider == provider)
    rows = q.order_by(AiModel.name.asc()).limit(limit).all()
    return schemas.AiModelListResponse(models=[_to_item(m) for m in rows])


@router.get("/{model_id:path}", response_model=schemas.AiModelResponse)
def get_model(
    model_id: str,
    db: Session = Depends(get_db_dep),
):
    """モデル1件を取得。"""
    row = db.query(AiModel).filter(AiModel.id == model_id).one_or_none()
    if row is None:
        raise CatalogModelNotFound()
    return schemas.AiModelResponse(model=_to_item(row))
