"""DB 接続とセッション管理。"""

from __future__ import annotations

import contextlib
import logging
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

# グローバルセッションファクトリ（init_db で設定）
SessionLocal: sessionmaker | None = None
_engine: Engine | None = None


def _create_engine(db_url: str):
    """SQLite向けの接続設定を適用したエンジンを作成。"""
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    engine = create_engine(db_url, future=True, connect_args=connect_args)

    if db_url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def apply_sqlite_pragmas(dbapi_conn, connection_record):
            # foreign_keys は接続ごとに有効化が必要（ON DELETE CASCADE のため）
            try:
                dbapi_conn.execute("PRAGMA foreign_keys=ON")
                dbapi_conn.execute("PRAGMA synchronous=NORMAL")
            except Exception as exc:  # noqa: BLE001
                logger.warning("SQLite PRAGMAの適用に失敗しました", exc_info=exc)

    return engine


def init_db(db_url: str) -> sessionmaker:
    """DBを初期化（テーブル作成・モデルカタログ投入）し、sessionmakerを返す。"""
    global SessionLocal, _engine

    # 再初期化時は前のエンジンの接続プールを閉じる
    if _engine is not None:
        _engine.dispose()
    engine = _create_engine(db_url)
    _engine = engine
    # テーブル定義を登録する
    from memo_chat import models

    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)

    with session_scope() as session:
        seeded = models.ensure_initial_models(session)
    if seeded:
        logger.info("モデルカタログを初期化しました: %s 件", seeded)
    logger.info(f"DB初期化完了: {db_url}")
    return SessionLocal


def get_db() -> Iterator[Session]:
    """DBのセッションを取得（FastAPI依存性注入用）。"""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextlib.contextmanager
def session_scope() -> Iterator[Session]:
    """DBのセッションスコープ（正常終了でcommit、例外でrollback）。"""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
