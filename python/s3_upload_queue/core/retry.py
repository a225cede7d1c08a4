"""マルチパートアップロードのリトライ回数管理"""
from typing import Dict


class RetryRegistry:
    """アップロード先キーごとの自動リトライ回数

    カウンターはそのキーのリトライが続いている間だけ存在する。
    """

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def reset(self, key: str) -> None:
        """新規（リトライでない）アップロードの前にカウンターを破棄"""
        self._counts.pop(key, None)

    def attempts(self, key: str) -> int:
        """これまでに予約したリトライ回数"""
        return self._counts.get(key, 0)

    def try_acquire(self, key: str, limit: int) -> bool:
        """上限未満ならカウントを進めて True を返す"""
        count = self._counts.setdefault(key, 0)
        if count >= limit:
            return False
        self._counts[key] = count + 1
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._counts

    def __len__(self) -> int:
        return len(self._counts)
