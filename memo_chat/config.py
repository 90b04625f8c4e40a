"""設定読み込みとランタイム設定ストア。"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass

import tomli

from memo_chat import defaults
from memo_chat.paths import get_default_config_file_path, get_default_database_url


@dataclass
class Config:
    """TOML起動設定（起動時のみ使用、変更不可）。"""

    log_level: str
    openrouter_api_key: str = ""
    openrouter_base_url: str = defaults.DEFAULT_OPENROUTER_BASE_URL
    app_url: str = defaults.DEFAULT_APP_URL
    app_title: str = defaults.DEFAULT_APP_TITLE
    database_url: str = ""
    upstream_timeout_seconds: int = defaults.DEFAULT_UPSTREAM_TIMEOUT_SECONDS
    log_file_enabled: bool = False
    log_file_path: str = "logs/memo_chat.log"


_ALLOWED_KEYS = {
    "log_level",
    "openrouter_api_key",
    "openrouter_base_url",
    "app_url",
    "app_title",
    "database_url",
    "upstream_timeout_seconds",
    "log_file_enabled",
    "log_file_path",
}


class ConfigStore:
    """ランタイム設定ストア。"""

    def __init__(self, config: Config) -> None:
        self._config = config

    @property
    def config(self) -> Config:
        """現在の設定を返す。"""
        return self._config

    @property
    def database_url(self) -> str:
        """DB URL（未指定なら data/memo_chat.db）。"""
        return self._config.database_url or get_default_database_url()


def _require(config_dict: dict, key: str) -> str:
    if key not in config_dict or config_dict[key] in (None, ""):
        raise ValueError(f"config key '{key}' is required")
    return config_dict[key]


def load_config(path: str | pathlib.Path | None = None) -> Config:
    """TOML設定を読み込む。"""
    config_path = pathlib.Path(path) if path is not None else get_default_config_file_path()
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    with config_path.open("rb") as f:
        data = tomli.load(f)

    unknown_keys = sorted(set(data.keys()) - _ALLOWED_KEYS)
    if unknown_keys:
        keys = ", ".join(repr(k) for k in unknown_keys)
        allowed = ", ".join(repr(k) for k in sorted(_ALLOWED_KEYS))
        raise ValueError(f"unknown config key(s): {keys} (allowed: {allowed})")

    return Config(
        log_level=_require(data, "log_level"),
        openrouter_api_key=str(data.get("openrouter_api_key") or ""),
        openrouter_base_url=str(data.get("openrouter_base_url") or defaults.DEFAULT_OPENROUTER_BASE_URL),
        app_url=str(data.get("app_url") or defaults.DEFAULT_APP_URL),
        app_title=str(data.get("app_title") or defaults.DEFAULT_APP_TITLE),
        database_url=str(data.get("database_url") or ""),
        upstream_timeout_seconds=int(data.get("upstream_timeout_seconds") or defaults.DEFAULT_UPSTREAM_TIMEOUT_SECONDS),
        log_file_enabled=bool(data.get("log_file_enabled", False)),
        log_file_path=str(data.get("log_file_path") or "logs/memo_chat.log"),
    )


_config_store: ConfigStore | None = None


def set_global_config_store(store: ConfigStore) -> None:
    """グローバルConfigStoreを設定。"""
    global _config_store
    _config_store = store


def get_config_store() -> ConfigStore:
    """グローバルConfigStoreを取得。"""
    global _config_store
    if _config_store is None:
        raise RuntimeError("ConfigStore not initialized")
    return _config_store
