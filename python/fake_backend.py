"""テスト用のインメモリバックエンド"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from s3_upload_queue.exceptions import UploadCancelledError, UploadError


class FakeBackend:
    """S3Backend と同じインターフェースを持つテスト用クライアント"""

    def __init__(
        self,
        multipart_failures: int = 0,
        always_fail: bool = False,
        block_multipart: bool = False,
        plain_cancel_error: bool = False,
        on_multipart: Optional[Callable[[str], None]] = None,
    ):
        self.calls: List[tuple] = []
        self.multipart_failures = multipart_failures
        self.always_fail = always_fail
        self.block_multipart = block_multipart
        self.plain_cancel_error = plain_cancel_error
        self.on_multipart = on_multipart
        self.cancelled = False
        self.started = asyncio.Event()
        self.cancel_event = asyncio.Event()

    async def put(self, path: str, data: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("put", path, config))
        await asyncio.sleep(0)
        return self._result(path, data)

    async def multipart_upload(self, path: str, data: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        self.cancelled = False
        self.calls.append(("multipart_upload", path, config))
        if self.on_multipart:
            self.on_multipart(path)

        if self.block_multipart:
            self.started.set()
            await self.cancel_event.wait()
            if self.plain_cancel_error:
                raise UploadError("Request aborted", key=path)
            raise UploadCancelledError(path)

        await asyncio.sleep(0)
        if self.always_fail or self.multipart_failures > 0:
            self.multipart_failures -= 1
            raise UploadError(f"Upload of {path} failed", key=path, status_code=503)
        return self._result(path, data)

    async def abort_multipart_upload(self, path: str, upload_id: str) -> Dict[str, Any]:
        self.calls.append(("abort_multipart_upload", path, upload_id))
        return {"res": {"status": 204}}

    def cancel(self) -> None:
        self.cancelled = True
        self.cancel_event.set()

    def is_cancelled(self) -> bool:
        return self.cancelled

    def paths(self, operation: str) -> List[str]:
        return [call[1] for call in self.calls if call[0] == operation]

    @staticmethod
    def _result(path: str, data: Any) -> Dict[str, Any]:
        return {
            "name": path,
            "url": f"https://bucket.s3.us-east-1.amazonaws.com/{path}",
            "res": {"status": 200, "size": len(data)},
        }


class FakeFactory:
    """呼び出し回数を数えるクライアントファクトリー（非同期）"""

    def __init__(self, backend: Any = None, delay: float = 0.01, error: Optional[Exception] = None):
        self.backend = backend
        self.delay = delay
        self.error = error
        self.calls = 0
        self.options: List[Dict[str, Any]] = []

    async def __call__(self, options: Dict[str, Any]):
        self.calls += 1
        self.options.append(options)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.backend
