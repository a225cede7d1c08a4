"""例外クラス"""
from typing import Any, Dict, Optional


class UploadQueueError(Exception):
    """全ての例外の基底クラス"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(UploadQueueError):
    """オプションや設定ファイルが不正"""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigResolutionError(UploadQueueError):
    """get_options フックによる非同期設定取得の失敗

    初期化時に握りつぶされ、取得前の設定のまま処理を続ける。
    """

    def __init__(self, message: str = "Failed to resolve async options") -> None:
        super().__init__(message)


class InitializationError(UploadQueueError):
    """バックエンドクライアントの作成に失敗"""

    def __init__(self, message: str = "Failed to create storage client") -> None:
        super().__init__(message)


class UploadError(UploadQueueError):
    """バックエンドでのアップロード失敗"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if key:
            details["key"] = key
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.key = key
        self.status_code = status_code


class UploadCancelledError(UploadError):
    """cancel() によって中断された（リトライしない）"""

    def __init__(self, key: Optional[str] = None) -> None:
        super().__init__("Upload cancelled", key=key)
