"""実行時パス解決。

設定ファイル・SQLiteファイル・ログはアプリルート配下に置く。
アプリルートは環境変数 MEMO_CHAT_HOME、未指定ならカレントディレクトリ。
"""

from __future__ import annotations

import os
from pathlib import Path


HOME_ENV = "MEMO_CHAT_HOME"


def get_app_root_dir() -> Path:
    """アプリのルートディレクトリを返す。"""
    env_home = os.getenv(HOME_ENV)
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.cwd().resolve()


def resolve_path_under_app_root(path: str | Path) -> Path:
    """相対パスはアプリルート基準で解決する（絶対パスはそのまま）。"""
    p = Path(path)
    if p.is_absolute():
        return p
    return (get_app_root_dir() / p).resolve()


def get_default_config_file_path() -> Path:
    """既定の設定ファイル（config/setting.toml）。"""
    return resolve_path_under_app_root("config/setting.toml")


def get_default_database_url() -> str:
    """既定のDB URL。data/ が無ければ作成する。"""
    db_path = resolve_path_under_app_root("data/memo_chat.db")
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"
