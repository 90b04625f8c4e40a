"""memo_chat.llm_client

OpenRouter（OpenAI chat.completions 互換）クライアント。

補完APIへストリーミングリクエストを送り、`data: <JSON>` 形式のイベントから
`choices[0].delta.content` を逐次取り出す。`data: [DONE]` で終端する。
壊れたフレーム（JSONでない・期待フィールドがない）は読み飛ばす。
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterator, List, Optional

import httpx

from memo_chat.errors import UpstreamError
from memo_chat.logging_config import LLM_IO_LOGGER_NAME


_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"


def _truncate_for_log(text: str, limit: int) -> str:
    """ログ出力用にテキストを切り詰める。"""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def _estimate_text_chars(messages: List[Dict[str, str]]) -> int:
    """INFOログ用の「おおまかな文字量」を見積もる。"""
    return sum(len(m.get("content") or "") for m in messages)


def _delta_content(frame: Any) -> str:
    """
    ストリーミングフレームから choices[0].delta.content を取り出す。
    期待する形でなければ空文字を返す。
    """
    try:
        delta = frame["choices"][0]["delta"]
        content = delta.get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    if not content:
        return ""
    # OpenAI形式で content が list の場合もあるため統一
    if isinstance(content, list):
        return "".join(item.get("text", "") if isinstance(item, dict) else str(item) for item in content)
    return str(content)


class LlmClient:
    """
    補完APIクライアント。
    httpx で OpenRouter の /chat/completions をストリーミング呼び出しする。
    """

    _ERROR_BODY_PREVIEW_CHARS = 500

    def __init__(
        self,
        api_key: str,
        base_url: str,
        app_url: str,
        app_title: str,
        timeout_seconds: float = 60,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        クライアントを初期化する。

        Args:
            api_key: 補完APIのBearerトークン
            base_url: 補完APIのベースURL（例: https://openrouter.ai/api/v1）
            app_url: HTTP-Referer ヘッダに載せるアプリURL
            app_title: X-Title ヘッダに載せるアプリ名
            timeout_seconds: HTTPタイムアウト秒数
            transport: テスト用の差し替えトランスポート
        """
        self.logger = logging.getLogger(__name__)
        # NOTE: 送受信ログは専用ロガーに分離する。
        self.io_logger = logging.getLogger(LLM_IO_LOGGER_NAME)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.app_url = app_url
        self.app_title = app_title
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)

    def close(self) -> None:
        """HTTPクライアントを閉じる。"""
        self._client.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.app_url,
            "X-Title": self.app_title,
        }

    def stream_chat_completion(
        self,
        model: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float = 0.7,
    ) -> Iterator[str]:
        """
        補完APIをストリーミングで呼び出し、テキスト差分を受信順に返すジェネレータ。

        非2xx応答や通信エラーは UpstreamError として送出する。
        呼び出し側がジェネレータを閉じると、上流レスポンスもそこで閉じる。
        """
        body = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
        }
        self.io_logger.info(
            "LLM request sent kind=chat model=%s stream=%s messages=%s approx_chars=%s",
            model,
            True,
            len(messages),
            _estimate_text_chars(messages),
        )

        start = time.perf_counter()
        reply_chars = 0
        try:
            with self._client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=body,
            ) as resp:
                if not resp.is_success:
                    error_text = resp.read().decode("utf-8", errors="replace")
                    raise UpstreamError(
                        f"upstream returned {resp.status_code}",
                        status_code=resp.status_code,
                        body=_truncate_for_log(error_text, self._ERROR_BODY_PREVIEW_CHARS),
                    )

                for line in resp.iter_lines():
                    if not line.startswith(_DATA_PREFIX):
                        continue
                    data = line[len(_DATA_PREFIX) :].strip()
                    if data == _DONE_SENTINEL:
                        break
                    try:
                        frame = json.loads(data)
                    except json.JSONDecodeError:
                        self.logger.debug("malformed upstream frame skipped: %s", _truncate_for_log(data, 200))
                        continue
                    content = _delta_content(frame)
                    if not content:
                        continue
                    reply_chars += len(content)
                    yield content
        except httpx.HTTPError as exc:
            raise UpstreamError(f"upstream request failed: {exc}") from exc

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        self.io_logger.info(
            "LLM response received kind=chat model=%s stream=%s reply_chars=%s ms=%s",
            model,
            True,
            reply_chars,
            elapsed_ms,
        )
