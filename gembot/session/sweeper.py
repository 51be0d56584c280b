"""
会话清扫服务 - 定期删除过期会话。

读取路径上的惰性过期只能清理"又被访问到"的会话，
被用户遗弃的会话如果永远不再访问，就会一直留在内存里。
本服务按固定间隔（默认 5 分钟）调用 SessionStore.sweep_expired()，
与请求流量无关。

架构设计：
- 基于 asyncio.Task 的定期循环（先等待一个间隔，再执行清扫）
- 单次清扫出错只记录日志，循环继续
- sweep_now() 支持手动触发，便于调试和测试
- 可选的 prune 回调在每次清扫后运行，用来清理指向已删除会话的外部索引
"""

import asyncio
from collections.abc import Callable

from loguru import logger

from gembot.session.manager import SessionStore

# 默认清扫间隔：5 分钟
DEFAULT_SWEEP_INTERVAL_S = 5 * 60


class SessionSweeper:
    """
    会话清扫服务。

    属性:
        store: 被清扫的会话存储
        interval_s: 清扫间隔（秒）
        enabled: 是否启用
        prune: 每次清扫后调用的回调，返回清理掉的条目数（可选）
    """

    def __init__(
        self,
        store: SessionStore,
        interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        enabled: bool = True,
        prune: Callable[[], int] | None = None,
    ):
        self.store = store
        self.prune = prune
        self.interval_s = interval_s
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动清扫服务。如果 enabled=False 则直接返回不启动。"""
        if not self.enabled:
            logger.info("Session sweeper disabled")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Session sweeper started (every {self.interval_s}s)")

    def stop(self) -> None:
        """停止清扫服务并取消循环任务。"""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        """清扫主循环。"""
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    self.sweep_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Session sweep error: {e}")

    def sweep_now(self) -> int:
        """立即执行一次清扫，返回删除的会话数。"""
        removed = self.store.sweep_expired()
        if removed:
            logger.info(f"Session sweep: removed {removed} expired sessions")
        else:
            logger.debug("Session sweep: nothing to remove")

        if self.prune is not None:
            pruned = self.prune()
            if pruned:
                logger.info(f"Session sweep: dropped {pruned} stale identities")
        return removed
