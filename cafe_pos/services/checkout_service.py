from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from cafe_pos.models import Order, OrderItem, PaymentMethod, Product
from cafe_pos.services.cart_service import Cart, CartLine, money, to_decimal
from cafe_pos.services.inventory_service import deduct_stock_for_order
from cafe_pos.services.loyalty_service import apply_order_to_card


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class CheckoutQuote:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: PaymentMethod
    amount_paid: Decimal
    change_amount: Decimal

    def to_dict(self) -> dict:
        return {
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'total': str(self.total),
            'payment_method': self.payment_method.value,
            'amount_paid': str(self.amount_paid),
            'change_amount': str(self.change_amount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CheckoutQuote:
        return cls(
            subtotal=to_decimal(data['subtotal'], label='subtotal'),
            tax=to_decimal(data['tax'], label='tax'),
            total=to_decimal(data['total'], label='total'),
            payment_method=parse_payment_method(data['payment_method']),
            amount_paid=to_decimal(data['amount_paid'], label='amount paid'),
            change_amount=to_decimal(data['change_amount'], label='change'),
        )


@dataclass(frozen=True)
class OrderSnapshot:
    """Everything needed to record a completed sale, independent of the cart."""

    order_number: str
    cashier_id: int
    quote: CheckoutQuote
    lines: tuple[CartLine, ...]
    loyalty_phone: str | None
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            'order_number': self.order_number,
            'cashier_id': self.cashier_id,
            'quote': self.quote.to_dict(),
            'lines': [line.to_dict() for line in self.lines],
            'loyalty_phone': self.loyalty_phone,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> OrderSnapshot:
        try:
            created_at = datetime.fromisoformat(data['created_at'])
            return cls(
                order_number=str(data['order_number']),
                cashier_id=int(data['cashier_id']),
                quote=CheckoutQuote.from_dict(data['quote']),
                lines=tuple(CartLine.from_dict(line) for line in data['lines']),
                loyalty_phone=data.get('loyalty_phone'),
                created_at=created_at if created_at.tzinfo else created_at.replace(tzinfo=timezone.utc),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError('Order snapshot is incomplete') from exc


def parse_payment_method(raw) -> PaymentMethod:
    if isinstance(raw, PaymentMethod):
        return raw
    try:
        return PaymentMethod(str(raw or '').strip().lower())
    except ValueError as exc:
        raise ValueError(f'Unsupported payment method: {raw}') from exc


def validate_checkout(cart: Cart, *, payment_method, amount_tendered=None) -> CheckoutQuote:
    if cart.is_empty:
        raise ValueError('Cart is empty')
    method = parse_payment_method(payment_method)

    subtotal = money(cart.subtotal)
    tax = cart.tax
    total = subtotal + tax

    if method == PaymentMethod.CASH:
        if amount_tendered is None or str(amount_tendered).strip() == '':
            raise ValueError('Amount tendered is required for cash payments')
        tendered = to_decimal(amount_tendered, label='amount tendered')
        if tendered < total:
            raise ValueError('Amount tendered is less than the total')
        change = tendered - total
    else:
        tendered = total
        change = Decimal('0.00')

    return CheckoutQuote(
        subtotal=subtotal,
        tax=tax,
        total=total,
        payment_method=method,
        amount_paid=money(tendered),
        change_amount=money(change),
    )


def generate_order_number(now: datetime) -> str:
    millis = str(int(now.timestamp() * 1000))
    return f'{now.year}-{millis[-6:]}'


def build_snapshot(cart: Cart, quote: CheckoutQuote, *, cashier_id: int, now: datetime | None = None) -> OrderSnapshot:
    created_at = now or _now()
    return OrderSnapshot(
        order_number=generate_order_number(created_at),
        cashier_id=cashier_id,
        quote=quote,
        lines=tuple(CartLine.from_dict(line.to_dict()) for line in cart.lines),
        loyalty_phone=cart.loyalty_phone,
        created_at=created_at,
    )


def _reserve_order_number(db: Session, snapshot: OrderSnapshot) -> str:
    candidate = snapshot.order_number
    moment = snapshot.created_at
    while db.execute(select(Order.id).where(Order.order_number == candidate)).scalar_one_or_none() is not None:
        moment = moment + timedelta(milliseconds=1)
        candidate = generate_order_number(moment)
    return candidate


def persist_order(
    db: Session,
    snapshot: OrderSnapshot,
    *,
    synced: bool = True,
    client_ref: str | None = None,
) -> Order:
    """Write the order header, its items, stock movements and loyalty credit.

    Nothing is committed here; the caller commits once so that the sale is
    recorded in full or not at all.
    """
    if not snapshot.lines:
        raise ValueError('Order has no items')
    quote = snapshot.quote

    order = Order(
        order_number=_reserve_order_number(db, snapshot),
        cashier_id=snapshot.cashier_id,
        subtotal=quote.subtotal,
        tax=quote.tax,
        total=quote.total,
        payment_method=quote.payment_method,
        amount_paid=quote.amount_paid,
        change_amount=quote.change_amount,
        loyalty_phone=snapshot.loyalty_phone,
        synced=synced,
        client_ref=client_ref,
        created_at=snapshot.created_at,
    )
    db.add(order)
    db.flush()

    known_products = set(
        db.execute(select(Product.id).where(Product.id.in_({line.product_id for line in snapshot.lines}))).scalars()
    )
    db.add_all(
        [
            OrderItem(
                order_id=order.id,
                product_id=line.product_id if line.product_id in known_products else None,
                product_name=line.product_name,
                variant_id=line.variant_id,
                variant_name=line.variant_name,
                modifiers=[m.to_dict() for m in line.modifiers],
                quantity=line.quantity,
                unit_price=money(line.recorded_unit_price),
                subtotal=money(line.subtotal),
            )
            for line in snapshot.lines
        ]
    )

    deduct_stock_for_order(
        db,
        order_id=order.id,
        order_number=order.order_number,
        quantities_by_product=_quantities_by_product(snapshot.lines),
        actor_profile_id=snapshot.cashier_id,
    )
    if snapshot.loyalty_phone:
        apply_order_to_card(db, loyalty_phone=snapshot.loyalty_phone, order_total=quote.total)

    db.flush()
    return order


def _quantities_by_product(lines) -> dict[int, int]:
    quantities: dict[int, int] = {}
    for line in lines:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    return quantities


def checkout(
    db: Session,
    *,
    cart: Cart,
    cashier_id: int,
    payment_method,
    amount_tendered=None,
    now: datetime | None = None,
) -> Order:
    quote = validate_checkout(cart, payment_method=payment_method, amount_tendered=amount_tendered)
    snapshot = build_snapshot(cart, quote, cashier_id=cashier_id, now=now)
    return persist_order(db, snapshot)


def order_summary(order: Order) -> dict:
    return {
        'id': order.id,
        'order_number': order.order_number,
        'subtotal': str(money(order.subtotal)),
        'tax': str(money(order.tax)),
        'total': str(money(order.total)),
        'payment_method': order.payment_method.value,
        'amount_paid': str(money(order.amount_paid)),
        'change_amount': str(money(order.change_amount)),
        'loyalty_phone': order.loyalty_phone,
        'synced': order.synced,
        'created_at': order.created_at,
    }
