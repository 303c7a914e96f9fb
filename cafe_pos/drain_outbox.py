from __future__ import annotations

import argparse

from cafe_pos.config import settings
from cafe_pos.db import SessionLocal
from cafe_pos.services.local_state_service import LocalStateDecodeError, LocalStateStore
from cafe_pos.services.sync_service import drain_pending_orders, load_sync_queue, save_sync_queue


def drain_all(store: LocalStateStore, *, profile_id: int | None = None) -> tuple[int, int, int, int]:
    delivered = 0
    failed = 0
    remaining = 0
    unreadable = 0

    profile_ids = [profile_id] if profile_id is not None else store.profile_ids()
    with SessionLocal() as db:
        for current_id in profile_ids:
            try:
                queue = load_sync_queue(store, current_id)
            except LocalStateDecodeError:
                unreadable += 1
                continue
            if not queue.get_pending_count():
                continue

            result = drain_pending_orders(
                db,
                queue,
                save_queue=lambda updated, owner=current_id: save_sync_queue(store, owner, updated),
            )
            delivered += len(result.delivered)
            failed += result.failed
            remaining += result.remaining
            if result.stopped:
                break

    return delivered, failed, remaining, unreadable


def main() -> None:
    parser = argparse.ArgumentParser(description='Replay orders queued by POS terminals while the store was offline.')
    parser.add_argument(
        '--state-dir',
        default=settings.local_state_dir,
        help='Directory holding per-cashier local state (defaults to LOCAL_STATE_DIR).',
    )
    parser.add_argument('--profile-id', type=int, default=None, help='Only drain the queue of this cashier.')
    args = parser.parse_args()

    delivered, failed, remaining, unreadable = drain_all(LocalStateStore(args.state_dir), profile_id=args.profile_id)
    print(
        f'Outbox drain complete: delivered={delivered}, failed={failed}, '
        f'remaining={remaining}, unreadable_queues={unreadable}'
    )


if __name__ == '__main__':
    main()
