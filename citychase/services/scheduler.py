"""AI の「考え中」待ち時間を挟むためのスケジューラ

エンジン自体は同期・単発で動く。待ち時間はコントローラ側でのみ挟む。
- AsyncioScheduler: イベントループの call_later で遅延実行（本番用）
- ManualScheduler: 溜めておき、run_pending() で順に実行（テスト用）
- ImmediateScheduler: 遅延を無視して即実行（ヘッドレス／バッチ用）
"""
import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Optional


class ScheduledTask:
    def __init__(self, delay_ms: int, callback: Callable[[], None]):
        self.delay_ms = delay_ms
        self.callback = callback
        self.cancelled = False
        self.done = False
        self.handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.handle is not None:
            self.handle.cancel()

    def fire(self) -> None:
        if self.cancelled or self.done:
            return
        self.done = True
        self.callback()


class SchedulerABC(ABC):
    @abstractmethod
    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledTask:
        ...


class AsyncioScheduler(SchedulerABC):
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(delay_ms, callback)
        loop = self.loop or asyncio.get_running_loop()
        task.handle = loop.call_later(max(0, delay_ms) / 1000.0, task.fire)
        return task


class ManualScheduler(SchedulerABC):
    def __init__(self) -> None:
        self.pending: Deque[ScheduledTask] = deque()

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(delay_ms, callback)
        self.pending.append(task)
        return task

    def run_next(self) -> bool:
        if not self.pending:
            return False
        self.pending.popleft().fire()
        return True

    def run_pending(self, limit: int = 10000) -> int:
        """溜まっているタスクを（実行中に追加されたものも含めて）順に実行する"""
        count = 0
        while count < limit and self.run_next():
            count += 1
        return count


class ImmediateScheduler(ManualScheduler):
    def __init__(self) -> None:
        super().__init__()
        self._draining = False

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledTask:
        task = super().schedule(delay_ms, callback)
        # 再入しないよう、最外側の呼び出しでまとめて実行する
        if not self._draining:
            self._draining = True
            try:
                self.run_pending()
            finally:
                self._draining = False
        return task
