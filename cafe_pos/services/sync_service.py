from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cafe_pos.config import settings
from cafe_pos.models import Order
from cafe_pos.services.checkout_service import OrderSnapshot, persist_order
from cafe_pos.services.local_state_service import LocalStateDecodeError, LocalStateStore

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = 'pos-sync-storage'


def _now_ms() -> int:
    return int(time.time() * 1000)


def backoff_seconds(attempts: int) -> int:
    if attempts <= 0:
        return 0
    delay = settings.sync_retry_base_seconds * (2 ** (attempts - 1))
    return min(delay, settings.sync_retry_max_seconds)


@dataclass
class PendingOrder:
    id: str
    order_data: dict
    timestamp: int
    attempts: int = 0
    next_attempt_at: int | None = None
    last_error: str | None = None

    def is_due(self, now_ms: int) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now_ms

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'orderData': self.order_data,
            'timestamp': self.timestamp,
            'attempts': self.attempts,
            'nextAttemptAt': self.next_attempt_at,
            'lastError': self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingOrder:
        return cls(
            id=str(data['id']),
            order_data=dict(data['orderData']),
            timestamp=int(data['timestamp']),
            attempts=int(data.get('attempts') or 0),
            next_attempt_at=data.get('nextAttemptAt'),
            last_error=data.get('lastError'),
        )


@dataclass
class SyncQueue:
    pending_orders: list[PendingOrder] = field(default_factory=list)
    is_online: bool = True

    def add_pending_order(self, order_data: dict, *, now_ms: int | None = None) -> PendingOrder:
        entry = PendingOrder(id=str(uuid.uuid4()), order_data=order_data, timestamp=now_ms or _now_ms())
        self.pending_orders.append(entry)
        return entry

    def remove_pending_order(self, pending_id: str) -> bool:
        before = len(self.pending_orders)
        self.pending_orders = [entry for entry in self.pending_orders if entry.id != pending_id]
        return len(self.pending_orders) != before

    def set_online_status(self, status: bool) -> None:
        self.is_online = bool(status)

    def get_pending_count(self) -> int:
        return len(self.pending_orders)

    def to_dict(self) -> dict:
        return {
            'pendingOrders': [entry.to_dict() for entry in self.pending_orders],
            'isOnline': self.is_online,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SyncQueue:
        return cls(
            pending_orders=[PendingOrder.from_dict(entry) for entry in data.get('pendingOrders') or []],
            is_online=bool(data.get('isOnline', True)),
        )


@dataclass(frozen=True)
class DrainResult:
    delivered: list[str]
    failed: int
    skipped: int
    remaining: int
    stopped: bool


def load_sync_queue(store: LocalStateStore, profile_id: int) -> SyncQueue:
    payload = store.load(profile_id, SYNC_STATE_KEY)
    if payload is None:
        return SyncQueue()
    try:
        return SyncQueue.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise LocalStateDecodeError('Stored sync queue could not be decoded') from exc


def save_sync_queue(store: LocalStateStore, profile_id: int, queue: SyncQueue) -> None:
    store.save(profile_id, SYNC_STATE_KEY, queue.to_dict())


def enqueue_order(queue: SyncQueue, snapshot: OrderSnapshot, *, now_ms: int | None = None) -> PendingOrder:
    return queue.add_pending_order(snapshot.to_dict(), now_ms=now_ms)


def _already_delivered(db: Session, pending_id: str) -> str | None:
    return db.execute(select(Order.order_number).where(Order.client_ref == pending_id)).scalar_one_or_none()


def drain_pending_orders(
    db: Session,
    queue: SyncQueue,
    *,
    save_queue: Callable[[SyncQueue], None],
    now_ms: int | None = None,
) -> DrainResult:
    """Replay queued orders oldest first until the store fails.

    Each delivered order is committed on its own and removed from the queue
    right after. A store error stops the drain and schedules a retry for the
    entry with exponential backoff; an undecodable entry, or one the store
    rejects with a constraint violation, stays queued with its error and does
    not block the ones behind it.
    """
    now = now_ms or _now_ms()
    delivered: list[str] = []
    failed = 0
    skipped = 0
    stopped = False

    for entry in sorted(queue.pending_orders, key=lambda item: item.timestamp):
        if not entry.is_due(now):
            skipped += 1
            continue

        try:
            existing_number = _already_delivered(db, entry.id)
            if existing_number is None:
                snapshot = OrderSnapshot.from_dict(entry.order_data)
                order = persist_order(db, snapshot, synced=False, client_ref=entry.id)
                db.commit()
                existing_number = order.order_number
        except ValueError as exc:
            db.rollback()
            entry.attempts += 1
            entry.last_error = str(exc)
            failed += 1
            logger.warning('Pending order %s could not be decoded: %s', entry.id, exc)
            continue
        except IntegrityError as exc:
            db.rollback()
            entry.attempts += 1
            entry.last_error = exc.__class__.__name__
            failed += 1
            logger.warning('Pending order %s was rejected by the store: %s', entry.id, exc)
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            entry.attempts += 1
            entry.next_attempt_at = now + backoff_seconds(entry.attempts) * 1000
            entry.last_error = exc.__class__.__name__
            failed += 1
            stopped = True
            logger.warning('Store unavailable while replaying pending order %s: %s', entry.id, exc)
            break

        queue.remove_pending_order(entry.id)
        save_queue(queue)
        delivered.append(existing_number)

    if stopped:
        queue.set_online_status(False)
    elif delivered:
        queue.set_online_status(True)
    save_queue(queue)
    return DrainResult(
        delivered=delivered,
        failed=failed,
        skipped=skipped,
        remaining=queue.get_pending_count(),
        stopped=stopped,
    )


def sync_status(queue: SyncQueue) -> dict:
    return {
        'is_online': queue.is_online,
        'pending_count': queue.get_pending_count(),
        'pending_orders': [
            {
                'id': entry.id,
                'order_number': entry.order_data.get('order_number'),
                'timestamp': entry.timestamp,
                'attempts': entry.attempts,
                'next_attempt_at': entry.next_attempt_at,
                'last_error': entry.last_error,
            }
            for entry in queue.pending_orders
        ],
    }
