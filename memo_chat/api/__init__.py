"""
API ルーター群

memo_chat の REST API エンドポイントを定義するルーターモジュール群。

含まれるルーター:
- chat: チャットAPI（SSEストリーミング / 一括応答）
- sessions: チャットセッションの一覧・取得・作成・改名・削除
- models: モデルカタログの参照
"""
