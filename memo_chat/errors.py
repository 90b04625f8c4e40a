"""
チャットAPIのエラー分類

イベントストリームを開く前に発生する失敗は、ここで定義する例外として送出し、
main.py の例外ハンドラが {"error": message, "code": kind} に変換する。
ストリーム開始後の失敗はフォールバック応答かフレームの読み飛ばしで吸収するため、
HTTPエラーとしては返らない（UpstreamError はその判定にのみ使う）。
"""

from __future__ import annotations


class ChatError(Exception):
    """チャットAPIの基底例外。"""

    kind = "internal_error"
    status_code = 500
    default_message = "일시적인 서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequired(ChatError):
    kind = "authentication_required"
    status_code = 401
    default_message = "인증이 필요합니다"


class ValidationError(ChatError):
    kind = "validation_error"
    status_code = 400
    default_message = "메시지와 모델이 필요합니다"


class ModelNotFound(ChatError):
    kind = "model_not_found"
    status_code = 400
    default_message = "유효하지 않은 모델입니다"


class CatalogModelNotFound(ChatError):
    kind = "model_not_found"
    status_code = 404
    default_message = "모델을 찾을 수 없습니다"


class SessionNotFound(ChatError):
    kind = "session_not_found"
    status_code = 404
    default_message = "채팅 세션을 찾을 수 없습니다"


class SessionCreateFailed(ChatError):
    kind = "session_create_failed"
    status_code = 500
    default_message = "채팅 세션을 생성할 수 없습니다"


class ContextFetchFailed(ChatError):
    kind = "context_fetch_failed"
    status_code = 500
    default_message = "메모를 불러오는데 실패했습니다"


class MessageSaveFailed(ChatError):
    kind = "message_save_failed"
    status_code = 500
    default_message = "메시지를 저장하는데 실패했습니다"


class UpstreamError(Exception):
    """上流（補完API）呼び出しの失敗。status_code は通信エラー時 None。"""

    kind = "upstream_failure"

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
