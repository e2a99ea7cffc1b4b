"""
Real-time account sync — push-based snapshot streams for account records.

Every write to an account record (user-initiated cancel/resume, processor
webhooks, reconciliation, deletion) is published here, and every
subscriber watching that account receives the full current record. A
client that started a checkout and is still waiting for the processor's
webhook therefore learns the final state the moment it lands, without
polling.

Events:
    - account_snapshot: Full current account record.
    - account_deleted: The record was removed; the stream ends.
    - heartbeat: Keep-alive ping sent every N seconds of silence.

Architecture:
- In-memory subscriber registry (single-process deployment).
- One bounded asyncio.Queue per subscriber. Snapshots are full records,
  so when a slow subscriber's queue fills the oldest snapshot is dropped.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from app.core.models import AccountSnapshot

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 16


class SyncEventType(StrEnum):
    """Types of events delivered to account subscribers."""

    SNAPSHOT = "account_snapshot"
    DELETED = "account_deleted"
    HEARTBEAT = "heartbeat"


@dataclass
class SSEEvent:
    """A single SSE event to be sent to the client."""

    event: SyncEventType
    data: dict
    id: str = ""
    retry: int | None = None

    def format(self) -> str:
        """Format as an SSE-compliant text block.

        SSE wire format: each field on its own line, double newline to end the event.
        """
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")
        lines.append(f"event: {self.event.value}")
        lines.append(f"data: {json.dumps(self.data)}")
        return "\n".join(lines) + "\n\n"


@dataclass(frozen=True)
class SyncMessage:
    """What a subscriber's queue holds: a snapshot, or a deletion notice."""

    event: SyncEventType
    account_id: str
    snapshot: AccountSnapshot | None = None


class AccountSubscription:
    """
    A live subscription to one account record.

    Iterate it to receive snapshots; iteration ends when the account is
    deleted or the subscription is closed.

        subscription = hub.subscribe(account_id)
        try:
            async for snapshot in subscription:
                ...
        finally:
            hub.unsubscribe(subscription)
    """

    def __init__(self, account_id: str, maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        self.account_id = account_id
        self._queue: asyncio.Queue[SyncMessage | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, message: SyncMessage | None) -> None:
        """Enqueue without blocking, dropping the oldest entry if full."""
        if self.closed:
            return
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(message)

    async def next_message(self) -> SyncMessage | None:
        """Wait for the next message. None means the subscription was closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if not self.closed:
            self.offer(None)
            self.closed = True

    def __aiter__(self) -> AsyncIterator[AccountSnapshot]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AccountSnapshot]:
        while True:
            message = await self.next_message()
            if message is None or message.event == SyncEventType.DELETED:
                return
            yield message.snapshot


class AccountSyncHub:
    """
    Registry of account subscriptions and the publish side of the stream.

    The hub provides:
    - subscribe() — open a snapshot stream for one account
    - unsubscribe() — tear it down
    - publish() — push the full current record to every subscriber
    - publish_deleted() — tell subscribers the record is gone
    - sse_stream() — adapt a subscription to formatted SSE text
    """

    def __init__(self):
        self._subscribers: dict[str, set[AccountSubscription]] = {}

    def subscriber_count(self, account_id: str) -> int:
        return len(self._subscribers.get(account_id, ()))

    @property
    def total_subscribers(self) -> int:
        return sum(len(subs) for subs in self._subscribers.values())

    def subscribe(
        self,
        account_id: str,
        initial: AccountSnapshot | None = None,
    ) -> AccountSubscription:
        """
        Open a subscription for an account.

        Args:
            account_id: The account to watch.
            initial: Current record, delivered first so the subscriber
                never starts from an empty state.
        """
        subscription = AccountSubscription(account_id)
        self._subscribers.setdefault(account_id, set()).add(subscription)
        if initial is not None:
            subscription.offer(SyncMessage(SyncEventType.SNAPSHOT, account_id, initial))
        logger.debug(
            f"[sync] Subscribed to account {account_id} "
            f"({self.subscriber_count(account_id)} active)"
        )
        return subscription

    def unsubscribe(self, subscription: AccountSubscription) -> None:
        subscription.close()
        subs = self._subscribers.get(subscription.account_id)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            self._subscribers.pop(subscription.account_id, None)
        logger.debug(f"[sync] Unsubscribed from account {subscription.account_id}")

    async def publish(self, snapshot: AccountSnapshot) -> int:
        """
        Re-emit the full current record to every subscriber of the account.

        Returns:
            Number of subscribers the snapshot was delivered to.
        """
        return self._fan_out(SyncMessage(SyncEventType.SNAPSHOT, snapshot.id, snapshot))

    async def publish_deleted(self, account_id: str) -> int:
        """Notify subscribers that the account record no longer exists."""
        delivered = self._fan_out(SyncMessage(SyncEventType.DELETED, account_id))
        for subscription in list(self._subscribers.get(account_id, ())):
            self.unsubscribe(subscription)
        return delivered

    def _fan_out(self, message: SyncMessage) -> int:
        subs = self._subscribers.get(message.account_id, set())
        for subscription in list(subs):
            subscription.offer(message)
        return len(subs)

    async def sse_stream(
        self,
        subscription: AccountSubscription,
        heartbeat_interval: float = 15.0,
    ) -> AsyncIterator[str]:
        """
        Async generator yielding formatted SSE events for a subscription.

        Sends heartbeat pings every ``heartbeat_interval`` seconds of silence.
        Unsubscribes on exit, including client disconnects.
        """
        try:
            while True:
                try:
                    message = await asyncio.wait_for(
                        subscription.next_message(), timeout=heartbeat_interval
                    )
                except TimeoutError:
                    yield SSEEvent(
                        event=SyncEventType.HEARTBEAT,
                        data={"timestamp": datetime.now(UTC).isoformat()},
                    ).format()
                    continue

                if message is None:
                    break

                if message.event == SyncEventType.DELETED:
                    yield SSEEvent(
                        event=SyncEventType.DELETED,
                        data={"id": message.account_id},
                    ).format()
                    break

                yield SSEEvent(
                    event=SyncEventType.SNAPSHOT,
                    data=message.snapshot.to_public(),
                ).format()
        finally:
            self.unsubscribe(subscription)


# ─── Module-level singleton ──────────────────────────────────

_sync_hub = AccountSyncHub()


def get_sync_hub() -> AccountSyncHub:
    """
    Get the shared sync hub singleton.

    Exposed as a function for testability (can be overridden in tests).
    """
    return _sync_hub
