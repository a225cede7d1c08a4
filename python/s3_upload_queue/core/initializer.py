"""バックエンドクライアントの遅延作成"""
import asyncio
import inspect
from typing import Any, Callable, Dict, Optional

from ..exceptions import ConfigResolutionError, InitializationError
from ..models.config import HOOK_KEYS
from ..utils.logger import LoggerManager


async def _resolve_maybe_awaitable(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _is_async_callable(func: Any) -> bool:
    """コルーチン関数、または async def __call__ を持つオブジェクトか"""
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


class ConfigResolver:
    """get_options フックで設定を非同期に取得"""

    def __init__(self, get_options: Optional[Callable[[], Any]] = None):
        self.get_options = get_options
        self.logger = LoggerManager.get_logger()

    async def fetch(self) -> Dict[str, Any]:
        """フックを呼び出す（失敗は ConfigResolutionError）"""
        if self.get_options is None:
            return {}
        try:
            options = await _resolve_maybe_awaitable(self.get_options())
        except Exception as e:
            raise ConfigResolutionError(f"get_options failed: {e}") from e
        return dict(options or {})

    async def resolve(self, current: Dict[str, Any]) -> Dict[str, Any]:
        """取得した設定を current に浅くマージして返す

        取得に失敗した場合は current をそのまま返す（次回の初期化で再取得できる）。
        """
        try:
            resolved = await self.fetch()
        except ConfigResolutionError as e:
            self.logger.warning(f"{e}; continuing with existing options")
            return current
        return {**current, **resolved}


class ClientInitializer:
    """共有クライアントの作成と保持"""

    def __init__(
        self,
        options: Dict[str, Any],
        factory: Callable[[Dict[str, Any]], Any],
        resolver: Optional[ConfigResolver] = None,
    ):
        self.options = options
        self.factory = factory
        self.resolver = resolver or ConfigResolver(options.get("get_options"))
        self.logger = LoggerManager.get_logger()
        self._client = None

    @property
    def client(self):
        return self._client

    async def acquire(self):
        """クライアントを取得（未作成なら作成）

        同時に呼ばれないことは RequestCoordinator が保証する。
        """
        if self._client is not None:
            return self._client

        if self.options.get("async"):
            self.options = await self.resolver.resolve(self.options)

        client_options = {k: v for k, v in self.options.items() if k not in HOOK_KEYS}

        try:
            if _is_async_callable(self.factory):
                client = await self.factory(client_options)
            else:
                # boto3 のセッション作成や STS の取得はブロックするのでワーカースレッドで行う
                client = await _resolve_maybe_awaitable(
                    await asyncio.to_thread(self.factory, client_options)
                )
        except Exception as e:
            self.logger.error(f"Error creating storage client: {e}")
            raise InitializationError(f"Failed to create storage client: {e}") from e

        self._client = client
        return client
