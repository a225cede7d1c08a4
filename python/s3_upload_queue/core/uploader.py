"""アップロード操作"""
import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..exceptions import UploadCancelledError, UploadError
from ..models.config import DEFAULT_OPTIONS, Config
from ..utils.logger import LoggerManager
from ..utils.merge import deep_merge
from ..utils.naming import generate_filename
from ..utils.response import format_response
from .coordinator import RequestCoordinator
from .initializer import ClientInitializer
from .retry import RetryRegistry
from .s3_client import S3Backend


# 自動リトライによる再投入であることを示す config キー
RETRY_FLAG = "__is_retry"

# wait_for_retries() 用に保持する再投入結果の既定の上限
RETRY_OUTCOME_LIMIT = 100


class S3Uploader:
    """遅延作成した1つのクライアントを共有するアップローダー

    全ての操作は RequestCoordinator を通るため、クライアント作成前に同時に
    呼ばれても作成は1回だけで、操作は呼ばれた順に開始される。
    """

    def __init__(
        self,
        options: Optional[Dict[str, Any]] = None,
        *,
        client_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
        get_options: Optional[Callable[[], Any]] = None,
        refresh_sts_token: Optional[Callable[[], Dict[str, Any]]] = None,
        retry_outcome_limit: int = RETRY_OUTCOME_LIMIT,
    ):
        options = deep_merge(DEFAULT_OPTIONS, options or {})
        if get_options is not None:
            options["get_options"] = get_options
        if refresh_sts_token is not None:
            options["refresh_sts_token"] = refresh_sts_token

        self.logger = LoggerManager.get_logger()
        self._initializer = ClientInitializer(options, client_factory or S3Backend.from_options)
        self._coordinator = RequestCoordinator(self._initializer)
        self._retry_registry = RetryRegistry()
        self._retries: Set[asyncio.Task] = set()
        # 古い結果から捨てる
        self._retry_outcomes: Deque[Any] = deque(maxlen=retry_outcome_limit)

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> 'S3Uploader':
        """設定ファイルの内容からアップローダーを作成"""
        LoggerManager.setup(config.logging)
        uploader = cls(config.options.to_dict(), **kwargs)
        uploader.logger.info("S3 Uploader initialized")
        return uploader

    @property
    def options(self) -> Dict[str, Any]:
        """現在の有効なオプション（get_options の結果を含む）"""
        return self._initializer.options

    @property
    def client(self):
        return self._initializer.client

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    @property
    def retry_registry(self) -> RetryRegistry:
        return self._retry_registry

    async def put(self, name: str, data: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """単一リクエストでアップロード"""
        async def action(client):
            call_config = self._call_config(config)
            path = generate_filename(name, self._rename(call_config), self.options.get("root_path", ""))
            result = await client.put(path, data, call_config)
            return self._format(result)

        return await self._coordinator.submit(action)

    async def multipart_upload(self, name: str, data: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """マルチパートアップロード

        失敗時（キャンセルを除く）はキーごとに retry_count 回までバックグラウンドで
        再投入する。再投入の結果はこの呼び出しの結果には反映されず、この呼び出しは
        最初の失敗をそのまま送出する。再投入の結果は wait_for_retries() で取得できる。
        再投入するのは UploadError（バックエンドの失敗）だけで、引数の誤りなどは
        そのまま送出する。
        """
        async def action(client):
            call_config = self._call_config(config)
            is_retry = bool(call_config.pop(RETRY_FLAG, False))

            # リトライ・再開時は同じキーに対して行う
            if is_retry or call_config.get("checkpoint"):
                path = name
            else:
                path = generate_filename(name, self._rename(call_config), self.options.get("root_path", ""))

            if not is_retry:
                self._retry_registry.reset(path)

            try:
                result = await client.multipart_upload(path, data, call_config)
            except UploadError as e:
                if self._is_cancelled(client, e):
                    self.logger.info(f"Multipart upload of {path} cancelled")
                    self._retry_registry.reset(path)
                    raise
                self._schedule_retry(path, data, call_config, e)
                raise
            except Exception:
                self._retry_registry.reset(path)
                raise

            if is_retry:
                self.logger.info(f"Multipart upload of {path} succeeded on retry")
                self._retry_registry.reset(path)
            return self._format(result)

        return await self._coordinator.submit(action)

    async def resume_multipart_upload(self, name: str, data: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """チェックポイントから再開（name はそのまま使い、自動リトライしない）"""
        async def action(client):
            result = await client.multipart_upload(name, data, self._call_config(config))
            return self._format(result)

        return await self._coordinator.submit(action)

    async def abort_multipart_upload(self, name: str, upload_id: str) -> Any:
        """マルチパートアップロードを中止"""
        async def action(client):
            return await client.abort_multipart_upload(name, upload_id)

        return await self._coordinator.submit(action)

    async def cancel(self) -> None:
        """実行中のマルチパートアップロードをキャンセル"""
        async def action(client):
            client.cancel()

        await self._coordinator.submit(action)

    async def wait_for_retries(self) -> List[Any]:
        """バックグラウンドの再投入が全て終わるまで待つ

        完了順に結果（整形済みの辞書）または例外オブジェクトのリストを返す。
        保持するのは直近 retry_outcome_limit 件まで。例外のトレースバックは保持しない。
        """
        while self._retries:
            await asyncio.wait(set(self._retries))
        outcomes = list(self._retry_outcomes)
        self._retry_outcomes.clear()
        return outcomes

    def _schedule_retry(self, path: str, data: Any, config: Dict[str, Any], error: Exception) -> None:
        limit = self.options.get("retry_count", 0)
        if not self._retry_registry.try_acquire(path, limit):
            self.logger.error(f"Multipart upload of {path} failed after {limit} retries: {error}")
            self._retry_registry.reset(path)
            return

        self.logger.warning(
            f"Multipart upload of {path} failed, retrying "
            f"({self._retry_registry.attempts(path)}/{limit}): {error}"
        )
        retry = asyncio.get_running_loop().create_task(
            self.multipart_upload(path, data, {**config, RETRY_FLAG: True})
        )
        self._retries.add(retry)
        retry.add_done_callback(self._retry_done)

    def _retry_done(self, task: asyncio.Task) -> None:
        self._retries.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._retry_outcomes.append(error.with_traceback(None))
        else:
            self._retry_outcomes.append(task.result())

    def _is_cancelled(self, client, error: Exception) -> bool:
        if isinstance(error, UploadCancelledError):
            return True
        is_cancelled = getattr(client, "is_cancelled", None)
        return bool(is_cancelled and is_cancelled())

    def _call_config(self, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """インスタンスの config に呼び出しごとの config を重ねる（保存はしない）"""
        return deep_merge(self.options.get("config") or {}, config or {})

    def _rename(self, config: Dict[str, Any]) -> bool:
        if "rename" in config:
            return bool(config["rename"])
        return bool(self.options.get("rename", True))

    def _format(self, result: Any) -> Dict[str, Any]:
        return format_response(
            result,
            enable_cdn=self.options.get("enable_cdn", False),
            cdn_url=self.options.get("cdn_url", ""),
        )
