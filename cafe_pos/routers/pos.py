from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from cafe_pos.auth import Principal, pos_access
from cafe_pos.db import get_db
from cafe_pos.dependencies import get_client_ip, get_local_store, service_error
from cafe_pos.schemas import (
    CartItemIn,
    CartQuantityIn,
    CheckoutIn,
    CloseShiftIn,
    ConnectivityIn,
    LoyaltyPhoneIn,
    OpenShiftIn,
)
from cafe_pos.security.csrf import verify_csrf
from cafe_pos.services.audit_service import log_audit
from cafe_pos.services.cart_service import (
    Cart,
    CartIndexError,
    CartLine,
    CartModifier,
    cart_view,
    load_cart,
    save_cart,
)
from cafe_pos.services.catalog_service import get_sellable_product, list_pos_catalog
from cafe_pos.services.checkout_service import build_snapshot, order_summary, persist_order, validate_checkout
from cafe_pos.services.local_state_service import LocalStateDecodeError, LocalStateStore
from cafe_pos.services.shift_service import close_shift, get_open_shift, open_shift, summarize_shift
from cafe_pos.services.sync_service import (
    SyncQueue,
    drain_pending_orders,
    enqueue_order,
    load_sync_queue,
    save_sync_queue,
    sync_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/pos', tags=['pos'])


def _load_cart(store: LocalStateStore, principal: Principal) -> Cart:
    try:
        return load_cart(store, principal.id)
    except LocalStateDecodeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _load_queue(store: LocalStateStore, principal: Principal) -> SyncQueue:
    try:
        return load_sync_queue(store, principal.id)
    except LocalStateDecodeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _shift_payload(shift) -> dict:
    return {
        'id': shift.id,
        'status': shift.status.value,
        'start_time': shift.start_time,
        'end_time': shift.end_time,
        'initial_cash': shift.initial_cash,
    }


@router.get('/catalog')
def catalog(
    category_id: int | None = None,
    search: str | None = None,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
):
    return list_pos_catalog(db, category_id=category_id, search=search)


@router.get('/cart')
def get_cart(
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
):
    return cart_view(_load_cart(store, principal))


@router.post('/cart/items')
def add_cart_item(
    payload: CartItemIn,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    try:
        product = get_sellable_product(db, product_id=payload.product_id)
        cart.add_item(
            CartLine(
                product_id=product.id,
                product_name=product.name,
                quantity=payload.quantity,
                base_price=product.base_price,
                variant_price=payload.variant_price,
                variant_id=payload.variant_id,
                variant_name=payload.variant_name,
                modifiers=[CartModifier(id=m.id, name=m.name, price=m.price) for m in payload.modifiers],
            )
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    save_cart(store, principal.id, cart)
    return cart_view(cart)


@router.patch('/cart/items/{index}')
def update_cart_item(
    index: int,
    payload: CartQuantityIn,
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    try:
        cart.update_quantity(index, payload.quantity)
    except CartIndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    save_cart(store, principal.id, cart)
    return cart_view(cart)


@router.delete('/cart/items/{index}')
def remove_cart_item(
    index: int,
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    try:
        cart.remove_item(index)
    except CartIndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    save_cart(store, principal.id, cart)
    return cart_view(cart)


@router.delete('/cart')
def clear_cart(
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    cart.clear()
    save_cart(store, principal.id, cart)
    return cart_view(cart)


@router.put('/cart/loyalty')
def set_cart_loyalty(
    payload: LoyaltyPhoneIn,
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    cart.set_loyalty_phone(payload.loyalty_phone)
    save_cart(store, principal.id, cart)
    return cart_view(cart)


def _queue_snapshot(store: LocalStateStore, principal: Principal, cart: Cart, queue: SyncQueue, snapshot) -> JSONResponse:
    entry = enqueue_order(queue, snapshot)
    save_sync_queue(store, principal.id, queue)
    cart.clear()
    save_cart(store, principal.id, cart)
    return JSONResponse(
        {
            'status': 'queued',
            'pending_id': entry.id,
            'order_number': snapshot.order_number,
            'total': str(snapshot.quote.total),
            'change_amount': str(snapshot.quote.change_amount),
            'pending_count': queue.get_pending_count(),
        },
        status_code=202,
    )


@router.post('/checkout')
def submit_checkout(
    payload: CheckoutIn,
    request: Request,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    cart = _load_cart(store, principal)
    queue = _load_queue(store, principal)
    try:
        quote = validate_checkout(cart, payment_method=payload.payment_method, amount_tendered=payload.amount_tendered)
    except ValueError as exc:
        raise service_error(exc) from exc
    snapshot = build_snapshot(cart, quote, cashier_id=principal.id)

    if not queue.is_online:
        logger.info('Terminal offline, queueing order %s', snapshot.order_number)
        return _queue_snapshot(store, principal, cart, queue, snapshot)

    try:
        if not get_open_shift(db, cashier_id=principal.id):
            raise HTTPException(status_code=409, detail='Open a shift before charging')
        order = persist_order(db, snapshot)
        log_audit(
            db,
            actor_profile_id=principal.id,
            action='ORDER_CREATED',
            entity_id=order.id,
            ip=get_client_ip(request),
            metadata={'order_number': order.order_number, 'total': str(order.total)},
        )
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc
    except OperationalError:
        db.rollback()
        logger.exception('Store unreachable during checkout, queueing order %s', snapshot.order_number)
        queue.set_online_status(False)
        return _queue_snapshot(store, principal, cart, queue, snapshot)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Checkout failed for order %s', snapshot.order_number)
        raise HTTPException(status_code=503, detail='Could not record the sale, try again') from exc

    cart.clear()
    save_cart(store, principal.id, cart)
    return {'status': 'completed', 'order': order_summary(order)}


@router.get('/shift')
def current_shift(
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
):
    shift = get_open_shift(db, cashier_id=principal.id)
    if not shift:
        return {'status': 'none'}
    return _shift_payload(shift)


@router.post('/shift/open')
def start_shift(
    payload: OpenShiftIn,
    request: Request,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        shift = open_shift(db, cashier_id=principal.id, initial_cash=payload.initial_cash)
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc

    log_audit(
        db,
        actor_profile_id=principal.id,
        action='SHIFT_OPENED',
        entity_id=shift.id,
        ip=get_client_ip(request),
        metadata={'initial_cash': str(shift.initial_cash)},
    )
    db.commit()
    return _shift_payload(shift)


@router.get('/shift/summary')
def shift_summary(
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
):
    shift = get_open_shift(db, cashier_id=principal.id)
    if not shift:
        raise HTTPException(status_code=404, detail='No open shift')
    return {'shift': _shift_payload(shift), 'totals': summarize_shift(db, shift).to_dict()}


@router.post('/shift/close')
def end_shift(
    payload: CloseShiftIn,
    request: Request,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    shift = get_open_shift(db, cashier_id=principal.id)
    if not shift:
        raise HTTPException(status_code=404, detail='No open shift')
    try:
        shift, totals, reconciliation = close_shift(db, shift=shift, final_cash=payload.final_cash, notes=payload.notes)
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc

    log_audit(
        db,
        actor_profile_id=principal.id,
        action='SHIFT_CLOSED',
        entity_id=shift.id,
        ip=get_client_ip(request),
        metadata={
            'expected_cash': str(reconciliation.expected_cash),
            'final_cash': str(reconciliation.final_cash),
            'difference': str(reconciliation.difference),
        },
    )
    db.commit()
    if reconciliation.has_discrepancy:
        logger.warning(
            'Shift %s closed with cash %s of %s',
            shift.id,
            reconciliation.status.lower(),
            reconciliation.difference,
        )
    return {
        'shift': _shift_payload(shift),
        'totals': totals.to_dict(),
        'reconciliation': reconciliation.to_dict(),
    }


@router.get('/sync')
def get_sync_status(
    principal: Principal = Depends(pos_access),
    store: LocalStateStore = Depends(get_local_store),
):
    return sync_status(_load_queue(store, principal))


def _drain(db: Session, store: LocalStateStore, principal: Principal, queue: SyncQueue) -> dict:
    result = drain_pending_orders(
        db,
        queue,
        save_queue=lambda current: save_sync_queue(store, principal.id, current),
    )
    return {
        'delivered': result.delivered,
        'failed': result.failed,
        'skipped': result.skipped,
        'remaining': result.remaining,
        'stopped': result.stopped,
        **sync_status(queue),
    }


@router.post('/sync/connectivity')
def set_connectivity(
    payload: ConnectivityIn,
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    queue = _load_queue(store, principal)
    queue.set_online_status(payload.is_online)
    save_sync_queue(store, principal.id, queue)
    if payload.is_online and queue.get_pending_count():
        return _drain(db, store, principal, queue)
    return sync_status(queue)


@router.post('/sync/drain')
def drain_queue(
    principal: Principal = Depends(pos_access),
    db: Session = Depends(get_db),
    store: LocalStateStore = Depends(get_local_store),
    _: None = Depends(verify_csrf),
):
    return _drain(db, store, principal, _load_queue(store, principal))
