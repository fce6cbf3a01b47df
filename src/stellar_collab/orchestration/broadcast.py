"""
Broadcast Dispatcher.

Delivers a ``SystemMessage`` to every recipient concurrently through a
``MessageTransport``. A delivery attempt is a send followed, when the
message requires it, by a bounded wait for the recipient's
acknowledgement. Failed attempts are retried with exponential backoff
until the retry budget is spent or the message expires.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, stop_any, wait_exponential

from stellar_collab.agents.communication import ALL_AGENTS, MessageTransport, SystemMessage
from stellar_collab.config.settings import EngineSettings
from stellar_collab.core.clock import utc_now
from stellar_collab.core.exceptions import DeliveryError, InvalidInputError, MessageExpiredError
from stellar_collab.core.logging import get_coordination_logger, get_logger
from stellar_collab.monitoring.metrics import MetricsAggregator


class DeliveryStatus(str, Enum):
    """Terminal per-recipient state in a broadcast result."""
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class FailureReason(str, Enum):
    SEND_FAILED = "send_failed"
    ACK_TIMEOUT = "ack_timeout"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class FailedDelivery(BaseModel):
    model_config = ConfigDict(frozen=True)

    recipient_id: str
    reason: FailureReason
    attempts: int
    reached: bool = False
    error: Optional[str] = None


class RetryStrategy(BaseModel):
    """Retry policy applied to this broadcast, and who is still unconfirmed."""
    model_config = ConfigDict(frozen=True)

    max_retries: int
    backoff: str = "exponential"
    initial_backoff_seconds: float
    ack_timeout_seconds: float
    retry_until: datetime
    recipients_to_retry: List[str] = Field(default_factory=list)


class DeliveryStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_recipients: int
    reached: int
    confirmed: int
    acknowledged: int
    failed: int
    total_attempts: int
    delivery_rate: float = Field(ge=0.0, le=1.0)
    average_delivery_time_ms: float = 0.0


class BroadcastResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    broadcast_id: str
    message_id: str
    delivery_timestamp: datetime
    recipient_status: Dict[str, DeliveryStatus]
    recipients_reached: List[str]
    delivery_confirmations: List[str]
    acknowledgments_received: List[str]
    failed_deliveries: List[FailedDelivery]
    retry_strategy: RetryStrategy
    delivery_statistics: DeliveryStatistics


@dataclass
class _RecipientState:
    recipient_id: str
    attempts: int = 0
    reached: bool = False
    acknowledged: bool = False
    confirmed: bool = False
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    confirmed_after: Optional[float] = None


class _AttemptFailed(Exception):
    pass


class BroadcastDispatcher:
    """At-least-once fan-out with acknowledgement tracking."""

    def __init__(
        self,
        transport: MessageTransport,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsAggregator] = None,
    ):
        self.transport = transport
        self.settings = settings or EngineSettings()
        self.metrics = metrics or MetricsAggregator()
        self._logger = get_logger(__name__)
        self._events = get_coordination_logger(__name__)

    def resolve_recipients(self, message: SystemMessage) -> List[str]:
        """
        Expand ``all-agents`` to every agent the transport knows, except
        the sender, and drop duplicates while keeping order.
        """
        recipients: List[str] = []
        for recipient in message.recipients:
            if recipient == ALL_AGENTS:
                recipients.extend(a for a in self.transport.known_recipients() if a != message.sender)
            elif recipient.strip():
                recipients.append(recipient)
        return list(dict.fromkeys(recipients))

    async def dispatch(self, message: SystemMessage, deadline: Optional[float] = None) -> BroadcastResult:
        """
        Deliver ``message`` to all of its recipients.

        Args:
            message: The message to broadcast
            deadline: Optional event-loop time after which unfinished deliveries are cancelled

        Raises:
            MessageExpiredError: If the message is already expired
            InvalidInputError: If the message has no recipients
        """
        if message.is_expired():
            raise MessageExpiredError(
                f"Message {message.message_id!r} expired at "
                f"{message.delivery_requirements.expiration_time.isoformat()}"
            )

        recipients = self.resolve_recipients(message)
        if not recipients:
            raise InvalidInputError(f"Message {message.message_id!r} has no recipients")

        loop = asyncio.get_running_loop()
        started = loop.time()
        expires_at = started + (message.delivery_requirements.expiration_time - utc_now()).total_seconds()
        stop_at = expires_at if deadline is None else min(expires_at, deadline)
        cutoff_reason = FailureReason.EXPIRED if stop_at == expires_at else FailureReason.CANCELLED

        states = {recipient: _RecipientState(recipient) for recipient in recipients}
        semaphore = asyncio.Semaphore(self.settings.broadcast_max_fanout)
        workers = {
            asyncio.create_task(self._deliver(message, states[recipient], semaphore, started, stop_at)): recipient
            for recipient in recipients
        }

        try:
            _, pending = await asyncio.wait(workers, timeout=max(stop_at - loop.time(), 0))
            for worker in pending:
                state = states[workers[worker]]
                if not state.confirmed:
                    state.reason = cutoff_reason
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self.transport.release(message.message_id)

        return self._finalize(message, recipients, states)

    async def _deliver(
        self,
        message: SystemMessage,
        state: _RecipientState,
        semaphore: asyncio.Semaphore,
        started: float,
        stop_at: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        retrying = AsyncRetrying(
            stop=stop_any(
                stop_after_attempt(self.settings.broadcast_max_retries + 1),
                lambda retry_state: loop.time() >= stop_at,
            ),
            wait=wait_exponential(multiplier=self.settings.broadcast_retry_backoff_seconds, max=30),
            retry=retry_if_exception_type(_AttemptFailed),
            reraise=True,
        )

        async with semaphore:
            try:
                async for attempt in retrying:
                    with attempt:
                        await self._attempt(message, state, stop_at)
            except _AttemptFailed:
                self._logger.debug(
                    "Delivery retries exhausted",
                    message_id=message.message_id,
                    recipient=state.recipient_id,
                    attempts=state.attempts,
                    reason=state.reason.value if state.reason else None,
                )
                return

        state.confirmed_after = loop.time() - started

    async def _attempt(self, message: SystemMessage, state: _RecipientState, stop_at: float) -> None:
        loop = asyncio.get_running_loop()
        state.attempts += 1

        try:
            await self.transport.send(state.recipient_id, message)
        except DeliveryError as e:
            state.reason, state.error = FailureReason.SEND_FAILED, e.reason
            raise _AttemptFailed() from e
        except Exception as e:
            state.reason, state.error = FailureReason.SEND_FAILED, str(e) or type(e).__name__
            raise _AttemptFailed() from e

        state.reached = True
        if not message.delivery_requirements.acknowledgment_required:
            state.confirmed = True
            state.reason = state.error = None
            return

        timeout = min(self.settings.broadcast_ack_timeout_seconds, stop_at - loop.time())
        if timeout > 0 and await self.transport.wait_for_ack(state.recipient_id, message.message_id, timeout):
            state.acknowledged = state.confirmed = True
            state.reason = state.error = None
            return

        state.reason, state.error = FailureReason.ACK_TIMEOUT, None
        raise _AttemptFailed()

    def _finalize(
        self,
        message: SystemMessage,
        recipients: List[str],
        states: Dict[str, _RecipientState],
    ) -> BroadcastResult:
        recipient_status: Dict[str, DeliveryStatus] = {}
        failed: List[FailedDelivery] = []

        for recipient in recipients:
            state = states[recipient]
            if state.acknowledged:
                recipient_status[recipient] = DeliveryStatus.ACKNOWLEDGED
            elif state.confirmed:
                recipient_status[recipient] = DeliveryStatus.DELIVERED
            else:
                recipient_status[recipient] = DeliveryStatus.FAILED
                failed.append(FailedDelivery(
                    recipient_id=recipient,
                    reason=state.reason or FailureReason.CANCELLED,
                    attempts=state.attempts,
                    reached=state.reached,
                    error=state.error,
                ))

        reached = [r for r in recipients if states[r].reached]
        confirmed = [r for r in recipients if states[r].confirmed]
        acknowledged = [r for r in recipients if states[r].acknowledged]
        latencies = [states[r].confirmed_after for r in confirmed if states[r].confirmed_after is not None]

        result = BroadcastResult(
            broadcast_id=str(uuid.uuid4()),
            message_id=message.message_id,
            delivery_timestamp=utc_now(),
            recipient_status=recipient_status,
            recipients_reached=reached,
            delivery_confirmations=confirmed,
            acknowledgments_received=acknowledged,
            failed_deliveries=failed,
            retry_strategy=RetryStrategy(
                max_retries=self.settings.broadcast_max_retries,
                initial_backoff_seconds=self.settings.broadcast_retry_backoff_seconds,
                ack_timeout_seconds=self.settings.broadcast_ack_timeout_seconds,
                retry_until=message.delivery_requirements.expiration_time,
                recipients_to_retry=[f.recipient_id for f in failed],
            ),
            delivery_statistics=DeliveryStatistics(
                total_recipients=len(recipients),
                reached=len(reached),
                confirmed=len(confirmed),
                acknowledged=len(acknowledged),
                failed=len(failed),
                total_attempts=sum(state.attempts for state in states.values()),
                delivery_rate=len(confirmed) / len(recipients),
                average_delivery_time_ms=(sum(latencies) / len(latencies) * 1000) if latencies else 0.0,
            ),
        )

        self.metrics.record_broadcast(confirmed=len(confirmed), failed=len(failed))

        if failed:
            self._events.delivery_failures(
                message_id=message.message_id,
                failed_recipients=[f.recipient_id for f in failed],
            )

        self._logger.info(
            "Broadcast finished",
            message_id=message.message_id,
            recipients=len(recipients),
            confirmed=len(confirmed),
            failed=len(failed),
        )

        return result
