"""
メモ文脈の組み立て

チャットで選択されたメモID・タグから、利用者本人のメモを取得し、
補完APIへ送るユーザーメッセージの末尾に付ける文脈テキストを作る。

- メモID指定: 明示的な添付なので取得失敗はエラー（ContextFetchFailed）
- タグ指定: 取得失敗はログだけ残してブロックを省略する
- 両方に一致したメモは重複して現れてよい（重複排除しない）
- 内容の切り詰め・要約はしない
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memo_chat import defaults
from memo_chat.errors import ContextFetchFailed
from memo_chat.models import Memo


logger = logging.getLogger(__name__)


def format_memo(memo: Memo) -> str:
    """メモ1件を「제목/내용/태그」の3行に整形する。"""
    tags = ", ".join(memo.tags or []) or defaults.NO_TAGS_TEXT
    return (
        f"{defaults.MEMO_TITLE_LABEL}: {memo.title}\n"
        f"{defaults.MEMO_CONTENT_LABEL}: {memo.content}\n"
        f"{defaults.MEMO_TAGS_LABEL}: {tags}"
    )


def format_memo_section(header: str, memos: Sequence[Memo]) -> str:
    """見出し付きのメモブロックを作る。メモが無ければ空文字。"""
    if not memos:
        return ""
    return f"\n\n{header}\n" + "\n\n".join(format_memo(m) for m in memos)


def fetch_memos_by_ids(db: Session, user_id: str, memo_ids: Iterable[str]) -> List[Memo]:
    """ID集合に含まれる本人のメモを取得する。"""
    ids = list(dict.fromkeys(memo_ids))
    if not ids:
        return []
    return (
        db.query(Memo)
        .filter(Memo.id.in_(ids), Memo.user_id == user_id)
        .order_by(Memo.created_at.asc(), Memo.id.asc())
        .all()
    )


def fetch_memos_by_tags(db: Session, user_id: str, tags: Iterable[str]) -> List[Memo]:
    """タグ集合と1つ以上重なる本人のメモを取得する（完全一致ではなく重なり判定）。"""
    wanted = set(tags)
    if not wanted:
        return []
    rows = (
        db.query(Memo)
        .filter(Memo.user_id == user_id, Memo.tags.isnot(None))
        .order_by(Memo.created_at.asc(), Memo.id.asc())
        .all()
    )
    return [m for m in rows if wanted.intersection(m.tags or [])]


def build_memo_context(
    db: Session,
    user_id: str,
    memo_ids: Sequence[str],
    tags: Sequence[str],
) -> str:
    """
    選択メモ・タグからプロンプト末尾に付ける文脈テキストを作る。

    同じ入力・同じメモデータに対しては常に同じ文字列を返す。
    """
    context = ""

    if memo_ids:
        try:
            memos = fetch_memos_by_ids(db, user_id, memo_ids)
        except SQLAlchemyError as exc:
            logger.error("メモ取得に失敗しました", exc_info=exc)
            raise ContextFetchFailed() from exc
        context += format_memo_section(defaults.ATTACHED_MEMOS_HEADER, memos)

    if tags:
        try:
            tag_memos = fetch_memos_by_tags(db, user_id, tags)
        except SQLAlchemyError as exc:
            logger.warning("タグ関連メモの取得に失敗しました（文脈から省略）", exc_info=exc)
        else:
            context += format_memo_section(defaults.TAG_MEMOS_HEADER, tag_memos)

    return context
