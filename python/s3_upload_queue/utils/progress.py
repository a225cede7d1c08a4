"""マルチパートアップロードの進捗管理"""
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .logger import LoggerManager


ProgressCallback = Callable[[float, Dict[str, Any]], Any]


class ProgressTracker:
    """単一のマルチパートアップロードの進捗とチェックポイントを追跡"""

    def __init__(
        self,
        checkpoint: Dict[str, Any],
        total_parts: int,
        callback: Optional[ProgressCallback] = None,
    ):
        self.checkpoint = checkpoint
        self.total_parts = total_parts
        self.callback = callback
        self.lock = threading.Lock()
        self.start_time = time.time()
        self.logger = LoggerManager.get_logger()

    @property
    def done_parts(self) -> List[Dict[str, Any]]:
        return self.checkpoint["done_parts"]

    def is_done(self, part_number: int) -> bool:
        """パートがアップロード済みか"""
        with self.lock:
            return any(p["number"] == part_number for p in self.done_parts)

    def fraction(self) -> float:
        if self.total_parts == 0:
            return 1.0
        return len(self.done_parts) / self.total_parts

    def part_done(self, part_number: int, etag: str) -> None:
        """パート完了を記録してコールバックを呼ぶ"""
        with self.lock:
            self.done_parts.append({"number": part_number, "etag": etag})
            fraction = self.fraction()
            snapshot = dict(self.checkpoint, done_parts=list(self.done_parts))

        elapsed = time.time() - self.start_time
        self.logger.debug(
            f"Part {part_number}/{self.total_parts} uploaded: "
            f"{fraction * 100:.1f}% in {elapsed:.1f}s ({self.checkpoint['name']})"
        )

        if self.callback:
            try:
                self.callback(fraction, snapshot)
            except Exception as e:
                self.logger.warning(f"Progress callback error: {e}")

    def parts(self) -> List[Dict[str, Any]]:
        """complete_multipart_upload 用のパート一覧（番号順）"""
        with self.lock:
            ordered = sorted(self.done_parts, key=lambda p: p["number"])
        return [{"PartNumber": p["number"], "ETag": p["etag"]} for p in ordered]
