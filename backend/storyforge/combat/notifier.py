"""Synchronous state broadcast to subscribers."""
import logging
from typing import Callable, List, Tuple

from .models import CombatState

logger = logging.getLogger(__name__)

Listener = Callable[[CombatState], None]


class EventNotifier:
    """有序监听者列表，变更完成后同步推送完整状态快照。

    监听者按注册顺序调用；某个监听者抛出异常只记录日志，不影响其他监听者，
    也不影响引擎状态。
    """

    def __init__(self) -> None:
        self._listeners: List[Tuple[int, Listener]] = []
        self._next_token = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册监听者，返回取消订阅函数（重复调用无副作用）"""
        token = self._next_token
        self._next_token += 1
        self._listeners.append((token, listener))

        def unsubscribe() -> None:
            self._listeners = [(t, l) for t, l in self._listeners if t != token]

        return unsubscribe

    def publish(self, state: CombatState) -> None:
        # 遍历副本：监听者在回调中取消订阅不影响本次推送
        for _, listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.error("combat state listener %r raised: %s", listener, exc, exc_info=True)
