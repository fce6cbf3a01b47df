"""
System messages and the message transport.

This module defines the ``SystemMessage`` record broadcast by the engine,
the ``MessageTransport`` protocol the Broadcast Dispatcher delivers
through, and ``MessageBus``, an in-memory transport with per-agent queues
and explicit acknowledgements.
"""

import asyncio
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stellar_collab.core.clock import ensure_utc, utc_now
from stellar_collab.core.exceptions import DeliveryError
from stellar_collab.core.logging import get_logger

ALL_AGENTS = "all-agents"


class MessagePriority(str, Enum):
    """Message priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MessageStatus(str, Enum):
    """Per-recipient delivery status recorded by the bus."""
    PENDING = "pending"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"
    EXPIRED = "expired"


class DeliveryRequirements(BaseModel):
    """Delivery guarantees requested by the sender."""
    model_config = ConfigDict(frozen=True)

    acknowledgment_required: bool = False
    read_receipt: bool = False
    expiration_time: datetime

    @field_validator("expiration_time")
    @classmethod
    def validate_expiration_time(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class SystemMessage(BaseModel):
    """A message addressed to one or more agents."""
    model_config = ConfigDict(frozen=True)

    message_id: str
    sender: str
    recipients: List[str]
    message_type: str = "system_update"
    priority: MessagePriority = MessagePriority.MEDIUM
    subject: str = ""
    content: Dict[str, Any] = Field(default_factory=dict)
    delivery_requirements: DeliveryRequirements
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.delivery_requirements.expiration_time <= (now or utc_now())


@dataclass
class MessageDeliveryReceipt:
    """Message delivery confirmation."""
    message_id: str
    recipient_id: str
    status: MessageStatus
    timestamp: datetime = field(default_factory=utc_now)
    error_message: Optional[str] = None


@runtime_checkable
class MessageTransport(Protocol):
    """What the Broadcast Dispatcher needs from a transport."""

    async def send(self, recipient_id: str, message: SystemMessage) -> None:
        """Hand the message to one recipient; raise ``DeliveryError`` on failure."""
        ...

    async def wait_for_ack(self, recipient_id: str, message_id: str, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for an ack; ``False`` when none arrived."""
        ...

    def known_recipients(self) -> List[str]:
        ...

    def release(self, message_id: str) -> None:
        """Drop acknowledgement state held for a finished broadcast."""
        ...


class MessageBus:
    """
    In-memory message transport.

    Every registered agent gets a bounded ``asyncio.Queue``. Agents pull
    messages with ``receive_message`` and confirm them with
    ``acknowledge``; acknowledgements that arrive before anybody waits for
    them are remembered until the message is released. Receipts are kept
    for the ``history_size`` most recent messages.
    """

    def __init__(self, max_queue_size: int = 1000, history_size: int = 1000):
        """
        Initialize the message bus.

        Args:
            max_queue_size: Maximum number of undelivered messages per agent
            history_size: Number of messages whose records are kept for inspection
        """
        self.max_queue_size = max_queue_size
        self.history_size = history_size

        self._agent_queues: Dict[str, asyncio.Queue] = {}
        self._acks: Dict[Tuple[str, str], asyncio.Future] = {}
        self._delivery_receipts: "OrderedDict[str, List[MessageDeliveryReceipt]]" = OrderedDict()
        self._released: "OrderedDict[str, None]" = OrderedDict()
        self._message_history: deque = deque(maxlen=history_size)

        self._logger = get_logger(__name__)
        self._stats = {
            "messages_sent": 0,
            "messages_delivered": 0,
            "messages_failed": 0,
            "acknowledgments": 0,
        }

    async def register_agent(self, agent_id: str) -> None:
        """Register an agent with the message bus."""
        if agent_id in self._agent_queues:
            self._logger.warning("Agent already registered", agent_id=agent_id)
            return

        self._agent_queues[agent_id] = asyncio.Queue(maxsize=self.max_queue_size)
        self._logger.info("Agent registered", agent_id=agent_id)

    async def unregister_agent(self, agent_id: str) -> None:
        """Unregister an agent and drop its pending acknowledgements."""
        if self._agent_queues.pop(agent_id, None) is None:
            self._logger.warning("Agent not registered", agent_id=agent_id)
            return

        for key in [key for key in self._acks if key[0] == agent_id]:
            future = self._acks.pop(key)
            if not future.done():
                future.cancel()

        self._logger.info("Agent unregistered", agent_id=agent_id)

    def known_recipients(self) -> List[str]:
        return sorted(self._agent_queues)

    async def send(self, recipient_id: str, message: SystemMessage) -> None:
        """
        Enqueue a message for one recipient.

        Raises:
            DeliveryError: If the recipient is unknown or its queue is full
        """
        self._stats["messages_sent"] += 1
        self._released.pop(message.message_id, None)

        queue = self._agent_queues.get(recipient_id)
        if queue is None:
            raise self._failure(message.message_id, recipient_id, "recipient not registered")

        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            raise self._failure(message.message_id, recipient_id, "queue full")

        self._record_delivery(message.message_id, recipient_id, MessageStatus.DELIVERED)
        self._stats["messages_delivered"] += 1
        self._message_history.append({
            "message_id": message.message_id,
            "sender": message.sender,
            "recipient_id": recipient_id,
            "timestamp": utc_now(),
        })

        self._logger.debug(
            "Message sent",
            message_id=message.message_id,
            sender=message.sender,
            recipient=recipient_id,
        )

    def _failure(self, message_id: str, recipient_id: str, reason: str) -> DeliveryError:
        self._stats["messages_failed"] += 1
        self._record_delivery(message_id, recipient_id, MessageStatus.FAILED, reason)
        return DeliveryError(recipient_id, reason)

    async def receive_message(self, agent_id: str, timeout: Optional[float] = None) -> Optional[SystemMessage]:
        """
        Receive the next message for an agent.

        Args:
            agent_id: Agent ID to receive message for
            timeout: Timeout in seconds (None for no timeout)

        Returns:
            Received message, or None on timeout or when the message expired in the queue
        """
        if agent_id not in self._agent_queues:
            raise ValueError(f"Agent not registered: {agent_id}")

        queue = self._agent_queues[agent_id]

        try:
            if timeout is None:
                message = await queue.get()
            else:
                message = await asyncio.wait_for(queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        if message.is_expired():
            self._record_delivery(message.message_id, agent_id, MessageStatus.EXPIRED)
            return None

        return message

    async def acknowledge(self, agent_id: str, message_id: str) -> None:
        """Record that ``agent_id`` has processed ``message_id``; late acks for released messages are dropped."""
        if message_id in self._released:
            self._logger.debug("Late acknowledgement ignored", agent_id=agent_id, message_id=message_id)
            return

        future = self._ack_future(agent_id, message_id)
        if not future.done():
            future.set_result(True)
            self._stats["acknowledgments"] += 1
            self._record_delivery(message_id, agent_id, MessageStatus.ACKNOWLEDGED)

    async def wait_for_ack(self, recipient_id: str, message_id: str, timeout: float) -> bool:
        future = self._ack_future(recipient_id, message_id)
        try:
            # Shielded so a timed-out wait leaves the future usable by a retry.
            await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        except asyncio.CancelledError:
            if future.cancelled():
                return False
            raise
        return True

    def _ack_future(self, agent_id: str, message_id: str) -> asyncio.Future:
        key = (agent_id, message_id)
        future = self._acks.get(key)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._acks[key] = future
        return future

    def release(self, message_id: str) -> None:
        """Drop acknowledgement futures for a finished message; receipts stay until evicted."""
        for key in [key for key in self._acks if key[1] == message_id]:
            future = self._acks.pop(key)
            if not future.done():
                future.cancel()

        self._released[message_id] = None
        while len(self._released) > self.history_size:
            self._released.popitem(last=False)

    def _record_delivery(
        self,
        message_id: str,
        recipient_id: str,
        status: MessageStatus,
        error_message: Optional[str] = None
    ) -> None:
        receipts = self._delivery_receipts.get(message_id)
        if receipts is None:
            receipts = self._delivery_receipts[message_id] = []
            while len(self._delivery_receipts) > self.history_size:
                self._delivery_receipts.popitem(last=False)
        receipts.append(MessageDeliveryReceipt(
            message_id=message_id,
            recipient_id=recipient_id,
            status=status,
            error_message=error_message,
        ))

    def get_delivery_receipts(self, message_id: str) -> List[MessageDeliveryReceipt]:
        return list(self._delivery_receipts.get(message_id, []))

    def get_stats(self) -> Dict[str, Any]:
        """Get message bus statistics."""
        return {
            **self._stats,
            "active_agents": len(self._agent_queues),
            "pending_acknowledgments": sum(1 for future in self._acks.values() if not future.done()),
            "tracked_acknowledgments": len(self._acks),
            "tracked_messages": len(self._delivery_receipts),
            "message_history_size": len(self._message_history),
        }
