"""
/chat エンドポイント

メモを文脈として添付したチャットリクエストを受け付ける。
/chat/stream は応答をSSE（Server-Sent Events）でストリーミング返却し、
/chat は同じ処理を最後まで読み切ってJSONで返す。
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import StreamingResponse

from memo_chat import schemas
from memo_chat.chat_service import SSE_HEADERS, SSE_MEDIA_TYPE, ChatService
from memo_chat.deps import get_chat_service, get_current_user_id


router = APIRouter()


@router.post("/chat/stream")
def chat_stream(
    request: schemas.ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(get_chat_service),
):
    """チャットリクエストを SSE ストリーミングで返却。"""
    # ストリームを開く前に失敗はすべて送出される（イベントは1つも送らない）
    turn = chat_service.open_turn(user_id, request, background_tasks)
    return StreamingResponse(chat_service.stream_events(turn), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.post("/chat", response_model=schemas.ChatResponse)
def chat(
    request: schemas.ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    chat_service: ChatService = Depends(get_chat_service),
):
    """チャットリクエストを処理し、応答全文を返却。"""
    turn = chat_service.open_turn(user_id, request, background_tasks)
    reply = chat_service.collect(turn)
    return schemas.ChatResponse(response=reply.response, session_id=reply.session_id)
