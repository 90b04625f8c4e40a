"""POST /api/chat/stream - SSE中継のテスト"""

from typing import Iterator, List

import httpx
from sqlalchemy.exc import OperationalError

from memo_chat import chat_sessions, memo_context, schemas
from memo_chat.chat_service import RelayPhase
from memo_chat.db import session_scope
from memo_chat.models import ChatMessage, ChatSession

from conftest import (
    MODEL_ID,
    OTHER_USER_ID,
    SMALL_MODEL_ID,
    auth,
    make_session,
    parse_events,
    sse_frame,
)


def _post(client, payload, token=None):
    headers = auth() if token is None else auth(token)
    return client.post("/api/chat/stream", json=payload, headers=headers)


def _messages(session_id: str) -> List[ChatMessage]:
    with session_scope() as db:
        return (
            db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc())
            .all()
        )


def _session(session_id: str) -> ChatSession:
    with session_scope() as db:
        return db.query(ChatSession).filter(ChatSession.id == session_id).one()


class TrackingStream(httpx.SyncByteStream):
    """close されたかを記録する上流レスポンス本文。"""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        yield from self.chunks

    def close(self) -> None:
        self.closed = True


class BrokenStream(httpx.SyncByteStream):
    """途中で接続が切れる上流レスポンス本文。"""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks

    def __iter__(self) -> Iterator[bytes]:
        yield from self.chunks
        raise httpx.ReadError("connection reset")


def test_events_are_ordered(client, upstream):
    """session → content（受信順）→ done"""
    upstream.reply("안녕", "하세요", "!")

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache, no-transform"
    assert resp.headers["x-accel-buffering"] == "no"
    events = parse_events(resp.text)
    assert events[0]["type"] == "session"
    assert events[0]["sessionId"].startswith("session_")
    assert [e["content"] for e in events[1:-1]] == ["안녕", "하세요", "!"]
    assert events[-1] == {"type": "done"}


def test_one_user_and_one_assistant_row_per_turn(client, upstream):
    upstream.reply("첫 번째 ", "답변")

    events = parse_events(_post(client, {"message": "질문", "modelId": MODEL_ID, "selectedMemos": ["m1"]}).text)
    rows = _messages(events[0]["sessionId"])

    assert [r.role for r in rows] == ["user", "assistant"]
    assert rows[0].content == "질문"
    assert rows[0].memo_ids == ["m1"]
    assert rows[1].content == "첫 번째 답변"
    assert rows[1].model_id == MODEL_ID


def test_upstream_request_carries_prompt_and_caps(client, upstream):
    resp = _post(client, {"message": "우유 샀어?", "modelId": MODEL_ID, "selectedMemos": ["m1"]})
    assert resp.status_code == 200

    request = upstream.requests[-1]
    body = upstream.last_body
    assert str(request.url) == "https://upstream.test/api/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    assert request.headers["x-title"] == "AI Memo Chat"
    assert body["model"] == MODEL_ID
    assert body["stream"] is True
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 4000
    assert body["messages"][0]["role"] == "system"
    assert body["messages"][1]["content"] == (
        "우유 샀어?\n\n[첨부된 메모들]\n제목: Groceries\n내용: Buy milk\n태그: home"
    )


def test_max_tokens_follows_small_model(client, upstream):
    _post(client, {"message": "hi", "modelId": SMALL_MODEL_ID})

    assert upstream.last_body["max_tokens"] == 1000


def test_upstream_failure_yields_single_fallback(client, upstream):
    """上流が500なら代替応答1件と done を返し、その内容を保存する"""
    upstream.fail(500)

    resp = _post(client, {"message": "hello", "modelId": MODEL_ID, "selectedMemos": ["m1", "m2"]})

    assert resp.status_code == 200
    events = parse_events(resp.text)
    assert [e["type"] for e in events] == ["session", "content", "done"]
    fallback = events[1]["content"]
    assert fallback.startswith("[Large Test Model]")
    assert "test API" in fallback
    assert "질문: hello" in fallback
    assert fallback.endswith("첨부된 메모: 2개")
    rows = _messages(events[0]["sessionId"])
    assert rows[-1].role == "assistant"
    assert rows[-1].content == fallback


def test_connection_error_yields_fallback(client, upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.handler = refuse

    events = parse_events(_post(client, {"message": "hello", "modelId": MODEL_ID}).text)

    assert [e["type"] for e in events] == ["session", "content", "done"]
    assert events[1]["content"].startswith("[Large Test Model]")


def test_malformed_frames_are_skipped(client, upstream):
    upstream.reply(
        "A",
        "B",
        extra_lines=["data: {not json", ": keep-alive", 'data: {"choices": []}', 'data: {"foo": 1}'],
    )

    events = parse_events(_post(client, {"message": "hi", "modelId": MODEL_ID}).text)

    assert [e["type"] for e in events] == ["session", "content", "content", "done"]
    assert "".join(e["content"] for e in events if e["type"] == "content") == "AB"


def test_stream_without_done_marker_completes(client, upstream):
    upstream.reply("끝", done=False)

    events = parse_events(_post(client, {"message": "hi", "modelId": MODEL_ID}).text)

    assert [e["type"] for e in events] == ["session", "content", "done"]


def test_mid_stream_failure_keeps_partial_reply(client, upstream):
    """転送後の失敗では代替応答を出さず、受信済みの部分を保存する"""
    chunks = [sse_frame("부분 ").encode("utf-8"), sse_frame("응답").encode("utf-8")]
    upstream.handler = lambda request: httpx.Response(200, stream=BrokenStream(chunks))

    events = parse_events(_post(client, {"message": "hi", "modelId": MODEL_ID}).text)

    assert [e["type"] for e in events] == ["session", "content", "content", "done"]
    rows = _messages(events[0]["sessionId"])
    assert rows[-1].content == "부분 응답"


def test_long_reply_retitles_session(client, upstream):
    reply = "이 답변은 세션 제목을 바꿀 만큼 충분히 긴 답변입니다"
    upstream.reply(reply)

    events = parse_events(_post(client, {"message": "짧은 질문", "modelId": MODEL_ID}).text)

    assert _session(events[0]["sessionId"]).title == reply + "..."


def test_short_reply_keeps_title(client, upstream):
    upstream.reply("네")

    events = parse_events(_post(client, {"message": "m" * 60, "modelId": MODEL_ID}).text)

    assert _session(events[0]["sessionId"]).title == "m" * 50 + "..."


def test_existing_session_is_reused_and_touched(client, upstream):
    make_session("session_existing")
    before = _session("session_existing").updated_at
    upstream.reply("네")

    events = parse_events(
        _post(client, {"message": "이어서", "modelId": MODEL_ID, "sessionId": "session_existing"}).text
    )

    assert events[0] == {"type": "session", "sessionId": "session_existing"}
    assert _session("session_existing").updated_at > before
    assert len(_messages("session_existing")) == 2


def test_empty_session_id_starts_new_session(client):
    events = parse_events(_post(client, {"message": "hi", "modelId": MODEL_ID, "sessionId": ""}).text)

    assert events[0]["sessionId"].startswith("session_")


def test_foreign_session_is_rejected_before_streaming(client, upstream):
    """他人のセッションは404（イベントもメッセージも作らない）"""
    make_session("session_theirs", user_id=OTHER_USER_ID)

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID, "sessionId": "session_theirs"})

    assert resp.status_code == 404
    assert resp.json()["code"] == "session_not_found"
    assert "data:" not in resp.text
    assert _messages("session_theirs") == []
    assert upstream.requests == []


def test_too_many_memos_is_rejected(client, upstream):
    """selectedMemos が51件なら400（上流呼び出しもセッション作成もしない）"""
    resp = _post(client, {"message": "hi", "modelId": MODEL_ID, "selectedMemos": [f"m{i}" for i in range(51)]})

    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"
    assert upstream.requests == []
    with session_scope() as db:
        assert db.query(ChatSession).count() == 0


def test_relay_close_marks_aborted_and_skips_final_write(app, chat_service, upstream):
    """最初の content の後に切断されたら、以降の保存を行わず上流も閉じる"""
    stream = TrackingStream([sse_frame("첫").encode("utf-8"), sse_frame("둘").encode("utf-8")])
    upstream.handler = lambda request: httpx.Response(200, stream=stream)
    request = schemas.ChatRequest.model_validate({"message": "hi", "modelId": MODEL_ID})

    turn = chat_service.open_turn("user-1", request)
    events = chat_service.relay(turn)
    assert next(events)["type"] == "session"
    assert next(events) == {"type": "content", "content": "첫"}
    events.close()

    assert turn.state.phase == RelayPhase.ABORTED
    assert stream.closed is True
    rows = _messages(turn.session.id)
    assert [r.role for r in rows] == ["user", "assistant"]
    assert rows[1].content == ""
    assert _session(turn.session.id).title == "hi"


def test_relay_phase_after_success(app, chat_service, upstream):
    upstream.reply("ok")
    request = schemas.ChatRequest.model_validate({"message": "hi", "modelId": MODEL_ID})

    turn = chat_service.open_turn("user-1", request)
    events = list(chat_service.relay(turn))

    assert events[-1] == {"type": "done"}
    assert turn.state.phase == RelayPhase.COMPLETED
    assert turn.state.reply_text == "ok"


def _locked(*args, **kwargs):
    raise OperationalError("UPDATE chat_sessions", {}, Exception("database is locked"))


def test_context_fetch_failure_is_rejected_before_streaming(client, upstream, monkeypatch):
    """選択メモの取得に失敗したら500（イベントも上流呼び出しもなし）"""
    monkeypatch.setattr(memo_context, "fetch_memos_by_ids", _locked)

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID, "selectedMemos": ["m1"]})

    assert resp.status_code == 500
    assert resp.json()["code"] == "context_fetch_failed"
    assert "data:" not in resp.text
    assert upstream.requests == []
    with session_scope() as db:
        assert db.query(ChatSession).count() == 0


def test_touch_failure_does_not_fail_turn(client, upstream, monkeypatch):
    """既存セッションの更新時刻の更新に失敗してもターンは完走する"""
    make_session("session_touch")
    before = _session("session_touch").updated_at
    monkeypatch.setattr(chat_sessions, "session_scope", _locked)
    upstream.reply("네")

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID, "sessionId": "session_touch"})

    assert resp.status_code == 200
    events = parse_events(resp.text)
    assert [e["type"] for e in events] == ["session", "content", "done"]
    assert _session("session_touch").updated_at == before
    assert [r.role for r in _messages("session_touch")] == ["user", "assistant"]


def test_session_insert_failure_is_rejected(client, upstream, monkeypatch):
    """セッション作成の失敗は500 session_create_failed"""
    make_session("session_taken")
    monkeypatch.setattr(chat_sessions, "new_session_id", lambda: "session_taken")

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID})

    assert resp.status_code == 500
    assert resp.json()["code"] == "session_create_failed"
    assert "data:" not in resp.text
    assert upstream.requests == []
    assert _session("session_taken").title == "existing"


def test_user_message_insert_failure_is_rejected(client, upstream, monkeypatch):
    """user メッセージの保存失敗は500 message_save_failed"""
    make_session("session_with_msg")
    with session_scope() as db:
        db.add(ChatMessage(id="msg_taken", session_id="session_with_msg", role="user", content="earlier"))
    monkeypatch.setattr(chat_sessions, "new_message_id", lambda: "msg_taken")

    resp = _post(client, {"message": "hi", "modelId": MODEL_ID})

    assert resp.status_code == 500
    assert resp.json()["code"] == "message_save_failed"
    assert "data:" not in resp.text
    assert upstream.requests == []
    with session_scope() as db:
        assert db.query(ChatMessage).filter(ChatMessage.content == "hi").count() == 0
