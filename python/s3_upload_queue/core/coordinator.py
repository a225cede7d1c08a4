"""リクエストの待ち合わせとクライアント初期化の一本化"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Set

from ..utils.logger import LoggerManager
from ..utils.naming import guid
from .initializer import ClientInitializer


Action = Callable[[Any], Awaitable[Any]]


@dataclass
class PendingTask:
    """クライアント準備後に実行する処理"""
    key: str
    action: Action
    future: asyncio.Future = field(repr=False)

    async def run(self, client) -> None:
        try:
            result = await self.action(client)
        except Exception as e:
            if not self.future.done():
                self.future.set_exception(e)
        else:
            if not self.future.done():
                self.future.set_result(result)

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class RequestCoordinator:
    """同時リクエストをキューに溜め、初期化を1回だけ行ってから登録順に実行する

    初期化を担当するのは initializing フラグを立てた呼び出し（リーダー）だけで、
    他の呼び出しはキューに登録して待つ。フラグの確認と登録の間に await を
    挟まないので、イベントループ上では不可分に行われる。
    """

    def __init__(self, initializer: ClientInitializer):
        self.initializer = initializer
        self.logger = LoggerManager.get_logger()
        self._queue: List[PendingTask] = []
        self._initializing = False
        self._running: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def initializing(self) -> bool:
        return self._initializing

    async def submit(self, action: Action) -> Any:
        """action(client) をキューに登録し、その結果を返す"""
        task = self.enqueue(action)
        await self.request_initialization()
        return await task.future

    def enqueue(self, action: Action) -> PendingTask:
        """キューに登録する（実行はしない）"""
        task = PendingTask(
            key=guid(),
            action=action,
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(task)
        self.logger.debug(f"Queued task {task.key} (pending: {len(self._queue)})")
        return task

    async def request_initialization(self) -> None:
        """クライアントを準備してキューを流す

        既にクライアントがあれば即座に流す。初期化中なら何もしない
        （リーダーが完了時に流す）。どちらでもなければ自分がリーダーになる。
        """
        client = self.initializer.client
        if client is not None:
            self.drain(client)
            return

        if self._initializing:
            self.logger.debug("Client initialization in progress; waiting for leader")
            return

        self._initializing = True
        try:
            client = await self.initializer.acquire()
        except asyncio.CancelledError:
            # 待機中のタスクのために新しいリーダーを立てる
            if self._queue:
                self._spawn(self.request_initialization())
            raise
        except Exception as e:
            self.fail_pending(e)
            return
        finally:
            self._initializing = False

        self.drain(client)

    def drain(self, client) -> None:
        """キューの全タスクを登録順に開始してキューを空にする"""
        tasks, self._queue = self._queue, []
        if tasks:
            self.logger.debug(f"Draining {len(tasks)} queued task(s)")

        for task in tasks:
            self._spawn(task.run(client))

    def _spawn(self, coro) -> asyncio.Task:
        running = asyncio.get_running_loop().create_task(coro)
        self._running.add(running)
        running.add_done_callback(self._running.discard)
        return running

    def fail_pending(self, error: BaseException) -> None:
        """初期化失敗をキューの全タスクに伝える"""
        tasks, self._queue = self._queue, []
        self.logger.error(f"Client initialization failed; failing {len(tasks)} queued task(s)")
        for task in tasks:
            task.fail(error)
