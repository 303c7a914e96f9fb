from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafe_pos.models import Order, OrderItem, PaymentMethod, Profile, Shift, ShiftStatus
from cafe_pos.services.cart_service import money, to_decimal

ZERO = Decimal('0.00')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class ShiftTotals:
    total_orders: int
    total_sales: Decimal
    cash_sales: Decimal
    card_sales: Decimal
    qr_sales: Decimal
    initial_cash: Decimal
    expected_cash: Decimal

    def to_dict(self) -> dict:
        return {
            'total_orders': self.total_orders,
            'total_sales': self.total_sales,
            'cash_sales': self.cash_sales,
            'card_sales': self.card_sales,
            'qr_sales': self.qr_sales,
            'initial_cash': self.initial_cash,
            'expected_cash': self.expected_cash,
        }


@dataclass(frozen=True)
class CashReconciliation:
    expected_cash: Decimal
    final_cash: Decimal
    difference: Decimal

    @property
    def has_discrepancy(self) -> bool:
        return self.difference != 0

    @property
    def status(self) -> str:
        if self.difference < 0:
            return 'SHORTAGE'
        if self.difference > 0:
            return 'OVERAGE'
        return 'BALANCED'

    def to_dict(self) -> dict:
        return {
            'expected_cash': self.expected_cash,
            'final_cash': self.final_cash,
            'difference': self.difference,
            'has_discrepancy': self.has_discrepancy,
            'status': self.status,
        }


def parse_cash_amount(raw, *, label: str) -> Decimal:
    if raw is None or str(raw).strip() == '':
        raise ValueError(f'{label} is required')
    amount = to_decimal(raw, label=label.lower())
    if amount < 0:
        raise ValueError(f'{label} cannot be negative')
    return money(amount)


def reconcile(expected_cash: Decimal, final_cash: Decimal) -> CashReconciliation:
    return CashReconciliation(
        expected_cash=expected_cash,
        final_cash=final_cash,
        difference=money(final_cash - expected_cash),
    )


def get_open_shift(db: Session, *, cashier_id: int) -> Shift | None:
    return db.execute(
        select(Shift).where(Shift.cashier_id == cashier_id, Shift.status == ShiftStatus.OPEN)
    ).scalars().first()


def open_shift(db: Session, *, cashier_id: int, initial_cash) -> Shift:
    amount = parse_cash_amount(initial_cash, label='Initial cash')
    if get_open_shift(db, cashier_id=cashier_id):
        raise ValueError('A shift is already open for this cashier')

    shift = Shift(
        cashier_id=cashier_id,
        start_time=_now(),
        initial_cash=amount,
        status=ShiftStatus.OPEN,
    )
    db.add(shift)
    try:
        db.flush()
    except IntegrityError as exc:
        # Concurrent open from another terminal hit the one-open-shift index.
        raise ValueError('A shift is already open for this cashier') from exc
    return shift


def list_shift_orders(db: Session, shift: Shift) -> list[Order]:
    query = (
        select(Order)
        .where(Order.cashier_id == shift.cashier_id, Order.created_at >= shift.start_time)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    if shift.end_time is not None:
        query = query.where(Order.created_at <= shift.end_time)
    return list(db.execute(query).scalars().all())


def compute_shift_totals(orders: list[Order], *, initial_cash: Decimal) -> ShiftTotals:
    by_method = {method: ZERO for method in PaymentMethod}
    total_sales = ZERO
    for order in orders:
        total_sales += order.total
        by_method[order.payment_method] += order.total

    return ShiftTotals(
        total_orders=len(orders),
        total_sales=money(total_sales),
        cash_sales=money(by_method[PaymentMethod.CASH]),
        card_sales=money(by_method[PaymentMethod.CARD]),
        qr_sales=money(by_method[PaymentMethod.QR]),
        initial_cash=money(initial_cash),
        expected_cash=money(initial_cash + by_method[PaymentMethod.CASH]),
    )


def summarize_shift(db: Session, shift: Shift) -> ShiftTotals:
    return compute_shift_totals(list_shift_orders(db, shift), initial_cash=shift.initial_cash)


def close_shift(
    db: Session,
    *,
    shift: Shift,
    final_cash,
    notes: str | None = None,
) -> tuple[Shift, ShiftTotals, CashReconciliation]:
    if shift.status != ShiftStatus.OPEN:
        raise ValueError('Shift is already closed')
    counted = parse_cash_amount(final_cash, label='Final cash')

    totals = summarize_shift(db, shift)
    shift.end_time = _now()
    shift.final_cash = counted
    shift.expected_cash = totals.expected_cash
    shift.status = ShiftStatus.CLOSED
    shift.notes = (notes or '').strip() or None
    db.flush()
    return shift, totals, reconcile(totals.expected_cash, counted)


def _cashier_label(full_name: str | None, email: str | None) -> str:
    if full_name:
        return full_name
    if email:
        return email.split('@')[0]
    return 'Desconocido'


def list_shifts(db: Session) -> list[dict]:
    rows = db.execute(
        select(Shift, Profile.full_name, Profile.email)
        .outerjoin(Profile, Profile.id == Shift.cashier_id)
        .order_by(Shift.start_time.desc(), Shift.id.desc())
    ).all()
    result = []
    for shift, full_name, email in rows:
        difference = None
        if shift.final_cash is not None and shift.expected_cash is not None:
            difference = money(shift.final_cash - shift.expected_cash)
        result.append(
            {
                'id': shift.id,
                'cashier_id': shift.cashier_id,
                'cashier_name': _cashier_label(full_name, email),
                'status': shift.status.value,
                'start_time': shift.start_time,
                'end_time': shift.end_time,
                'initial_cash': shift.initial_cash,
                'final_cash': shift.final_cash,
                'expected_cash': shift.expected_cash,
                'difference': difference,
            }
        )
    return result


def _method_breakdown(orders: list[Order], totals: ShiftTotals) -> list[dict]:
    sales = {
        PaymentMethod.CASH: totals.cash_sales,
        PaymentMethod.CARD: totals.card_sales,
        PaymentMethod.QR: totals.qr_sales,
    }
    breakdown = []
    for method in PaymentMethod:
        percentage = ZERO
        if totals.total_sales > 0:
            percentage = (sales[method] / totals.total_sales * 100).quantize(Decimal('0.1'))
        breakdown.append(
            {
                'payment_method': method.value,
                'total': sales[method],
                'count': sum(1 for order in orders if order.payment_method == method),
                'percentage': percentage,
            }
        )
    return breakdown


def get_shift_detail(db: Session, *, shift_id: int) -> dict:
    row = db.execute(
        select(Shift, Profile.full_name, Profile.email)
        .outerjoin(Profile, Profile.id == Shift.cashier_id)
        .where(Shift.id == shift_id)
    ).one_or_none()
    if not row:
        raise ValueError('Shift not found')

    shift, full_name, email = row
    orders = list_shift_orders(db, shift)
    totals = compute_shift_totals(orders, initial_cash=shift.initial_cash)

    items_by_order: dict[int, list[dict]] = {order.id: [] for order in orders}
    if orders:
        items = db.execute(
            select(OrderItem).where(OrderItem.order_id.in_(list(items_by_order))).order_by(OrderItem.id.asc())
        ).scalars().all()
        for item in items:
            items_by_order[item.order_id].append(
                {
                    'product_name': item.product_name,
                    'variant_name': item.variant_name,
                    'quantity': item.quantity,
                    'unit_price': item.unit_price,
                    'subtotal': item.subtotal,
                }
            )

    cash_count = None
    if shift.status == ShiftStatus.CLOSED and shift.final_cash is not None:
        cash_count = reconcile(totals.expected_cash, shift.final_cash).to_dict()

    return {
        'id': shift.id,
        'cashier_name': _cashier_label(full_name, email),
        'status': shift.status.value,
        'start_time': shift.start_time,
        'end_time': shift.end_time,
        'initial_cash': shift.initial_cash,
        'final_cash': shift.final_cash,
        'expected_cash': shift.expected_cash,
        'notes': shift.notes,
        'totals': totals.to_dict(),
        'average_ticket': money(totals.total_sales / totals.total_orders) if totals.total_orders else ZERO,
        'payment_methods': _method_breakdown(orders, totals),
        'cash_count': cash_count,
        'orders': [
            {
                'id': order.id,
                'order_number': order.order_number,
                'created_at': order.created_at,
                'payment_method': order.payment_method.value,
                'subtotal': order.subtotal,
                'tax': order.tax,
                'total': order.total,
                'amount_paid': order.amount_paid,
                'change_amount': order.change_amount,
                'items': items_by_order[order.id],
            }
            for order in orders
        ],
    }
