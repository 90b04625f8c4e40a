"""
ロギング設定

- root: コンソール（＋任意でローテーションするファイル）
- memo_chat.llm_io: 補完APIの送受信サマリ専用（rootへは伝播させない）
- uvicorn.access: ヘルスチェックのアクセスログを除外

チャット中継のログは extra（session_id, forwarded など）で文脈を渡すため、
フォーマッタは既知の extra キーを末尾に key=value で付け足す。
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from memo_chat.paths import resolve_path_under_app_root


LLM_IO_LOGGER_NAME = "memo_chat.llm_io"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# ログに付け足す extra キー（この順で出力）
_CONTEXT_KEYS = ("user_id", "session_id", "message_id", "status_code", "forwarded", "path", "body")

_FILE_MAX_BYTES = 1_000_000


class _ContextFormatter(logging.Formatter):
    """extra で渡された中継の文脈をメッセージ末尾に付ける。"""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = [
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_KEYS
            if getattr(record, key, None) not in (None, "")
        ]
        if not fields:
            return text
        return f"{text} [{' '.join(fields)}]"


class _AccessPathFilter(logging.Filter):
    """uvicorn のアクセスログのうち、指定パスへのリクエストを落とす。"""

    def __init__(self, paths: frozenset[str]) -> None:
        super().__init__()
        self.paths = paths

    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn.access の args は (client, method, path, http_version, status)
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            path = str(args[2]).split("?", 1)[0]
            return path not in self.paths
        return True


def suppress_uvicorn_access_log_paths(*paths: str) -> None:
    """uvicornアクセスログから特定パスを除外する（同じ指定の重複登録はしない）。"""
    if not paths:
        return
    access_logger = logging.getLogger("uvicorn.access")
    wanted = frozenset(paths)
    for existing in access_logger.filters:
        if isinstance(existing, _AccessPathFilter) and existing.paths == wanted:
            return
    access_logger.addFilter(_AccessPathFilter(wanted))


def setup_logging(
    level: str = "INFO",
    *,
    log_file_enabled: bool = False,
    log_file_path: str = "logs/memo_chat.log",
) -> None:
    """ロギングを初期化する。"""
    root_level = getattr(logging, level.upper(), logging.INFO)
    formatter = _ContextFormatter(_LOG_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file_enabled:
        log_path = resolve_path_under_app_root(log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_path, maxBytes=_FILE_MAX_BYTES, backupCount=1, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=root_level, handlers=handlers)

    io_logger = logging.getLogger(LLM_IO_LOGGER_NAME)
    io_logger.handlers.clear()
    for handler in handlers:
        io_logger.addHandler(handler)
    io_logger.setLevel(root_level)
    io_logger.propagate = False

    # httpx は上流へのリクエストごとにINFOを出すため抑える
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
