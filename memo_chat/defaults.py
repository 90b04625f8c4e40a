"""
アプリケーションのデフォルト値

プロンプト文面、メモ文脈の見出し、入力上限、
DB初期化時に投入するモデルカタログなどを定義する。
"""

from __future__ import annotations

# --- チャット入力の上限 ---
MAX_MESSAGE_CHARS = 4000
MAX_SELECTED_MEMOS = 50
MAX_SELECTED_TAGS = 100

# --- セッションタイトル ---
SESSION_TITLE_MAX_CHARS = 50
SESSION_TITLE_SUFFIX = "..."
# 応答がこの文字数を超えたらセッションタイトルを応答の冒頭で置き換える
RETITLE_MIN_REPLY_CHARS = 20

# --- 上流呼び出しパラメータ ---
UPSTREAM_MAX_TOKENS_CAP = 4000
UPSTREAM_TEMPERATURE = 0.7

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_APP_TITLE = "AI Memo Chat"
DEFAULT_UPSTREAM_TIMEOUT_SECONDS = 60

# --- プロンプト ---
SYSTEM_PROMPT = (
    "당신은 사용자의 메모를 분석하고 질문에 답변하는 도우미입니다.\n"
    "사용자가 첨부한 메모 내용을 참고하여 정확하고 도움이 되는 답변을 제공해주세요.\n"
    "한국어로 답변해주세요."
)

ATTACHED_MEMOS_HEADER = "[첨부된 메모들]"
TAG_MEMOS_HEADER = "[태그 관련 메모들]"
MEMO_TITLE_LABEL = "제목"
MEMO_CONTENT_LABEL = "내용"
MEMO_TAGS_LABEL = "태그"
NO_TAGS_TEXT = "없음"

FALLBACK_REPLY_TEMPLATE = (
    "[{model_name}] 개발 중인 모델입니다. 실제 구현 시 {provider} API를 호출합니다.\n\n"
    "질문: {message}\n\n"
    "첨부된 메모: {memo_count}개"
)

# --- モデルカタログ初期値（id, 表示名）。max_tokens は既定値、無料かどうかは一覧で決まる ---
DEFAULT_MODEL_MAX_TOKENS = 4096

CURATED_FREE_MODELS = [
    ("deepseek/deepseek-r1-0528:free", "DeepSeek R1 0528 (free)"),
    ("openai/gpt-oss-120b:free", "gpt-oss-120b (free)"),
    ("meta-llama/llama-3.3-70b-instruct:free", "Llama 3.3 70B Instruct (free)"),
    ("nousresearch/hermes-3-llama-3.1-405b:free", "Hermes 3 405B Instruct (free)"),
    ("qwen/qwen3-coder:free", "Qwen3 Coder (free)"),
    ("mistralai/mistral-small-3.1-24b-instruct:free", "Mistral Small 3.1 24B (free)"),
    ("google/gemma-3-27b-it:free", "Gemma 3 27B (free)"),
    ("openai/gpt-oss-20b:free", "gpt-oss-20b (free)"),
]

CURATED_PAID_MODELS = [
    ("anthropic/claude-opus-4.6", "Claude Opus 4.6"),
    ("anthropic/claude-sonnet-4.6", "Claude Sonnet 4.6"),
    ("openai/gpt-4.1", "GPT-4.1"),
    ("openai/o4-mini", "o4 Mini"),
    ("google/gemini-2.5-pro", "Gemini 2.5 Pro"),
    ("google/gemini-2.5-flash", "Gemini 2.5 Flash"),
    ("x-ai/grok-4", "Grok 4"),
    ("x-ai/grok-3", "Grok 3"),
    ("deepseek/deepseek-r1-0528", "DeepSeek R1 0528"),
    ("openai/gpt-4.1-mini", "GPT-4.1 Mini"),
]
