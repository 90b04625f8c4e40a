"""FastAPI エントリポイント。"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from memo_chat.api import chat, models, sessions
from memo_chat.config import ConfigStore, load_config, set_global_config_store
from memo_chat.db import init_db
from memo_chat.deps import reset_chat_service
from memo_chat.errors import ChatError, ValidationError
from memo_chat.logging_config import setup_logging, suppress_uvicorn_access_log_paths


logger = logging.getLogger(__name__)


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """ChatError を {"error", "code"} 形式で返す。"""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.kind})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """リクエスト検証エラーを400で返す（上流処理は一切行わない）。"""
    logger.info("request validation failed", extra={"path": request.url.path})
    err = ValidationError()
    return JSONResponse(
        status_code=err.status_code,
        content={
            "error": err.message,
            "code": err.kind,
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def create_app(config_store: Optional[ConfigStore] = None) -> FastAPI:
    """アプリ生成と初期化（設定→ロギング→DB→ルータ登録）をまとめて行う。"""

    # 1. TOML設定読み込み
    if config_store is None:
        config_store = ConfigStore(load_config())
    cfg = config_store.config
    setup_logging(cfg.log_level, log_file_enabled=cfg.log_file_enabled, log_file_path=cfg.log_file_path)
    suppress_uvicorn_access_log_paths("/api/health")
    set_global_config_store(config_store)
    reset_chat_service()

    # 2. DB初期化
    init_db(config_store.database_url)

    # 3. FastAPIアプリ作成
    app = FastAPI(title="Memo Chat API")
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(chat.router, prefix="/api")
    app.include_router(sessions.router, prefix="/api")
    app.include_router(models.router, prefix="/api")

    @app.get("/api/health")
    async def health():
        """稼働確認用のヘルスチェック。"""
        return {"status": "healthy"}

    @app.on_event("shutdown")
    async def close_chat_service() -> None:
        """上流HTTPクライアントを閉じる。"""
        reset_chat_service()

    return app
