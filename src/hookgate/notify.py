"""Best-effort operator notifications.

Session identifiers double as routing keys: ``<channel>:group:<id>:topic:<n>``
targets a forum topic, ``<channel>:group:<id>`` a group chat and
``<channel>:<numeric id>`` a direct chat. Sub-agent sessions carry no route of
their own, so :meth:`NotificationRouter.resolve_target` walks a fallback chain
ending at the most recent primary session seen by :class:`SessionTracker`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from .state import SessionStateStore
from .types import SUBAGENT_MARKER, Defaults, EventContext


logger = logging.getLogger(__name__)

TargetScope = Literal["topic", "group", "direct"]

_TOPIC_RE = re.compile(r"([A-Za-z][\w-]*):group:([-\w]+):topic:(\d+)")
_GROUP_RE = re.compile(r"([A-Za-z][\w-]*):group:([-\w]+)")
_DIRECT_RE = re.compile(r"([A-Za-z][\w-]*):(-?\d+)$")

# Keys in EventContext.extra that may carry a full routable session id.
EMBEDDED_TARGET_KEYS = ("notificationTarget", "messageProvider")


@dataclass(frozen=True)
class NotificationTarget:
    channel: str
    chat_id: str
    thread_id: int | None = None
    scope: TargetScope = "direct"


DeliveryChannel = Callable[[NotificationTarget, str], "Awaitable[Any] | Any"]


def parse_target(session_id: str) -> NotificationTarget | None:
    """Most specific shape first: topic, then group, then direct."""
    if not session_id or SUBAGENT_MARKER in session_id:
        return None
    match = _TOPIC_RE.search(session_id)
    if match:
        return NotificationTarget(match.group(1), match.group(2), int(match.group(3)), "topic")
    match = _GROUP_RE.search(session_id)
    if match:
        return NotificationTarget(match.group(1), match.group(2), None, "group")
    match = _DIRECT_RE.search(session_id)
    if match:
        return NotificationTarget(match.group(1), match.group(2), None, "direct")
    return None


class SessionTracker:
    """Process-wide "most recent primary session", backed by a durable record.

    Shared by concurrent events without locking: last write wins, which is
    acceptable for advisory routing information.
    """

    def __init__(self, store: SessionStateStore | None = None) -> None:
        self._store = store or SessionStateStore()
        self._current: str | None = None

    def _remember(self, session_id: str) -> bool:
        """Only sessions with a parseable route are worth remembering."""
        if session_id == self._current or parse_target(session_id) is None:
            return False
        self._current = session_id
        return True

    def record(self, session_id: str) -> None:
        if self._remember(session_id):
            self._store.save(session_id)

    async def record_async(self, session_id: str) -> None:
        if self._remember(session_id):
            await asyncio.to_thread(self._store.save, session_id)

    def last_primary(self) -> str | None:
        if self._current is None:
            self._current = self._store.load()
        return self._current


class NotificationRouter:
    def __init__(self, channel: DeliveryChannel | None = None, tracker: SessionTracker | None = None) -> None:
        self._channel = channel
        self.tracker = tracker or SessionTracker()
        self._pending: set[asyncio.Task[None]] = set()

    def set_channel(self, channel: DeliveryChannel | None) -> None:
        self._channel = channel

    def send(self, session_id: str, text: str) -> None:
        """Fire and forget. Never raises; failures are only logged."""
        coro = self._deliver(session_id, text)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            threading.Thread(target=asyncio.run, args=(coro,), name="hookgate-notify", daemon=True).start()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight notifications; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, session_id: str, text: str) -> None:
        try:
            if self._channel is None:
                logger.warning("尚未設定通知管道，略過通知")
                return
            target = parse_target(session_id)
            if target is None:
                logger.warning("無法從 session 解析通知對象：%s", session_id)
                return
            outcome = self._channel(target, text)
            if inspect.isawaitable(outcome):
                await outcome
            logger.info(
                "通知已送出 channel=%s chat=%s thread=%s：%s",
                target.channel,
                target.chat_id,
                target.thread_id,
                text[:80],
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("通知送出失敗：%s", exc, exc_info=True)

    def resolve_target(self, ctx: EventContext, defaults: Defaults | None = None) -> str:
        """Pick the session id whose route should receive a notification."""
        if not ctx.is_subagent:
            return ctx.session_id

        for key in EMBEDDED_TARGET_KEYS:
            embedded = ctx.extra.get(key)
            if isinstance(embedded, str) and parse_target(embedded) is not None:
                return embedded

        last_primary = self.tracker.last_primary()
        if last_primary and parse_target(last_primary) is not None:
            logger.info("子代理 session %s 改用主 session %s 通知", ctx.session_id, last_primary)
            return last_primary

        if defaults is not None and defaults.notification_target:
            return defaults.notification_target

        logger.warning("找不到子代理 session %s 的通知對象，通知可能無法送達", ctx.session_id)
        return ctx.session_id
