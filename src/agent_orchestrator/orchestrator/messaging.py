"""In-memory publish/subscribe channel for agents running in one orchestration."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from agent_orchestrator.orchestrator.models import BROADCAST, Message, MessageKind

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100

MessageHandler = Callable[[Message], None]


class Subscription:
    """Per-subscriber FIFO delivery queue.

    With a handler, messages are pushed to it in publish order. Without one
    they accumulate until pulled with :meth:`receive` or :meth:`drain`.
    """

    def __init__(
        self,
        *,
        agent_id: str | None,
        handler: MessageHandler | None,
        receive_broadcasts: bool,
    ) -> None:
        self.agent_id = agent_id
        self.receive_broadcasts = receive_broadcasts
        self._handler = handler
        self._queue: deque[Message] = deque()
        self._queue_lock = threading.Lock()
        self._dispatching = False
        self.active = True

    @property
    def pending(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def receive(self) -> Message | None:
        """Pop the oldest undelivered message, if any."""

        with self._queue_lock:
            return self._queue.popleft() if self._queue else None

    def drain(self) -> list[Message]:
        with self._queue_lock:
            messages = list(self._queue)
            self._queue.clear()
        return messages

    def _enqueue(self, message: Message) -> None:
        with self._queue_lock:
            self._queue.append(message)

    def _dispatch(self) -> None:
        # One thread drains a subscription at a time; a publisher that finds a
        # drain in progress leaves its message to that thread.
        if self._handler is None:
            return
        with self._queue_lock:
            if self._dispatching:
                return
            self._dispatching = True
        while True:
            with self._queue_lock:
                if not self.active or not self._queue:
                    self._dispatching = False
                    return
                message = self._queue.popleft()
            try:
                self._handler(message)
            except Exception:
                logger.exception(
                    "Message handler for %s failed on message #%d",
                    self.agent_id or BROADCAST,
                    message.sequence,
                )


class MessageBus:
    """Routes messages by agent role, with a bounded history ring buffer."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("Message history limit must be >= 1.")
        self._history: deque[Message] = deque(maxlen=history_limit)
        self._by_agent: dict[str, list[Subscription]] = {}
        self._listeners: list[Subscription] = []
        self._sequence = 0
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def history_limit(self) -> int:
        return self._history.maxlen or 0

    @property
    def dropped(self) -> int:
        """Messages evicted from history because of the size bound."""

        return self._dropped

    def subscribe(
        self,
        agent_id: str,
        handler: MessageHandler | None = None,
        *,
        receive_broadcasts: bool = True,
    ) -> Subscription:
        """Register a delivery queue for messages addressed to ``agent_id``."""

        if not agent_id or agent_id == BROADCAST:
            raise ValueError(f"Invalid subscriber agent id: {agent_id!r}")
        subscription = Subscription(
            agent_id=agent_id,
            handler=handler,
            receive_broadcasts=receive_broadcasts,
        )
        with self._lock:
            self._by_agent.setdefault(agent_id, []).append(subscription)
        return subscription

    def subscribe_broadcast(self, handler: MessageHandler | None = None) -> Subscription:
        """Register a listener that only receives broadcast messages."""

        subscription = Subscription(agent_id=None, handler=handler, receive_broadcasts=True)
        with self._lock:
            self._listeners.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription.agent_id is None:
                if subscription in self._listeners:
                    self._listeners.remove(subscription)
                return
            registered = self._by_agent.get(subscription.agent_id, [])
            if subscription in registered:
                registered.remove(subscription)
            if not registered:
                self._by_agent.pop(subscription.agent_id, None)

    def publish(
        self,
        sender: str,
        recipient: str,
        content: Any,
        *,
        kind: MessageKind | None = None,
    ) -> Message:
        """Record a message and deliver it to matching subscribers.

        Broadcasts reach every broadcast-enabled subscriber except the sender's own.
        """

        with self._lock:
            self._sequence += 1
            message = Message(
                sender=sender,
                recipient=recipient,
                content=content,
                sequence=self._sequence,
                kind=kind or (MessageKind.BROADCAST if recipient == BROADCAST else MessageKind.DATA),
            )
            if len(self._history) == self._history.maxlen:
                self._dropped += 1
            self._history.append(message)
            targets = self._targets_for(message)
            for subscription in targets:
                subscription._enqueue(message)

        logger.debug(
            "Message #%d %s -> %s delivered to %d subscriber(s)",
            message.sequence,
            sender,
            recipient,
            len(targets),
        )
        for subscription in targets:
            subscription._dispatch()
        return message

    def send(self, sender: str, recipient: str, content: Any) -> Message:
        """Point-to-point data message."""

        return self.publish(sender, recipient, content)

    def broadcast(self, sender: str, content: Any) -> Message:
        return self.publish(sender, BROADCAST, content, kind=MessageKind.BROADCAST)

    def history(self, agent_id: str | None = None) -> list[Message]:
        """Retained messages, optionally only those sent by or addressed to ``agent_id``."""

        with self._lock:
            messages = list(self._history)
        if agent_id is None:
            return messages
        return [m for m in messages if agent_id in (m.sender, m.recipient)]

    def clear(self) -> None:
        """Drop history and every subscription."""

        with self._lock:
            for subscriptions in self._by_agent.values():
                for subscription in subscriptions:
                    subscription.active = False
            for subscription in self._listeners:
                subscription.active = False
            self._history.clear()
            self._by_agent.clear()
            self._listeners.clear()
            self._dropped = 0

    def _targets_for(self, message: Message) -> list[Subscription]:
        if not message.is_broadcast:
            return list(self._by_agent.get(message.recipient, []))
        targets = [
            subscription
            for agent_id, subscriptions in self._by_agent.items()
            if agent_id != message.sender
            for subscription in subscriptions
            if subscription.receive_broadcasts
        ]
        targets.extend(self._listeners)
        return targets
