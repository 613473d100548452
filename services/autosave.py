"""
自动保存调度 (Autosave Scheduler)
每次输入都会重新开始一个静默期计时器；计时结束时才读取当前内容并持久化。
"""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD = 1.5


class AutosaveScheduler:
    """
    可取消、可重启的防抖计时器。

    计时器只负责等待；等待结束后保存任务与计时器解绑，
    之后的输入只会取消新的计时器，永远不会中断已经开始的写入。

    Args:
        flush_callback: 计时结束时调用的协程函数，负责读取最新状态并保存。
        quiet_period: 静默期 (秒)。
    """

    def __init__(self, flush_callback: Callable[[], Awaitable[bool]], quiet_period: float = DEFAULT_QUIET_PERIOD):
        self.quiet_period = quiet_period
        self._flush_callback = flush_callback
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """是否有尚未触发的计时器"""
        return self._timer is not None and not self._timer.done()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def schedule(self):
        """(重新) 开始静默期计时。必须在事件循环中调用，本身不阻塞。"""
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait_then_flush())

    def cancel(self):
        """取消尚未触发的计时器"""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def flush_now(self) -> bool:
        """手动保存：跳过计时器立即写入"""
        self.cancel()
        return await self._flush_callback()

    def track(self, coro: Awaitable) -> asyncio.Task:
        """登记一个已发出的写入 (例如切换章节时的旧章节保存)，确保它能跑完。"""
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self):
        """等待所有已发出的写入完成"""
        while self._inflight:
            results = await asyncio.gather(*list(self._inflight), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"后台保存失败: {result}")

    async def _wait_then_flush(self):
        await asyncio.sleep(self.quiet_period)
        current = asyncio.current_task()
        if self._timer is current:
            self._timer = None
        self._inflight.add(current)
        current.add_done_callback(self._inflight.discard)
        await self._flush_callback()
