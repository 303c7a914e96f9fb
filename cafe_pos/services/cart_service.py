from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from cafe_pos.config import settings
from cafe_pos.services.local_state_service import LocalStateDecodeError, LocalStateStore

CART_STATE_KEY = 'pos-cart-storage'
TWO_PLACES = Decimal('0.01')


class CartIndexError(IndexError):
    pass


def money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value, *, label: str) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f'Invalid amount for {label}') from exc
    if not amount.is_finite():
        raise ValueError(f'Invalid amount for {label}')
    return amount


@dataclass(frozen=True)
class CartModifier:
    id: str
    name: str
    price: Decimal

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'price': str(self.price)}

    @classmethod
    def from_dict(cls, data: dict) -> CartModifier:
        return cls(id=str(data['id']), name=str(data['name']), price=to_decimal(data['price'], label='modifier price'))


@dataclass
class CartLine:
    product_id: int
    product_name: str
    quantity: int
    base_price: Decimal
    variant_price: Decimal = Decimal('0')
    variant_id: str | None = None
    variant_name: str | None = None
    modifiers: list[CartModifier] = field(default_factory=list)
    subtotal: Decimal = Decimal('0')

    @property
    def unit_price(self) -> Decimal:
        return self.base_price + self.variant_price + sum((m.price for m in self.modifiers), Decimal('0'))

    @property
    def recorded_unit_price(self) -> Decimal:
        # Order items record base + variant; modifiers only show up in the subtotal.
        return self.base_price + self.variant_price

    def recompute(self) -> None:
        self.subtotal = self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'variant_id': self.variant_id,
            'variant_name': self.variant_name,
            'quantity': self.quantity,
            'base_price': str(self.base_price),
            'variant_price': str(self.variant_price),
            'modifiers': [m.to_dict() for m in self.modifiers],
            'subtotal': str(self.subtotal),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CartLine:
        line = cls(
            product_id=int(data['product_id']),
            product_name=str(data['product_name']),
            quantity=int(data['quantity']),
            base_price=to_decimal(data['base_price'], label='base price'),
            variant_price=to_decimal(data.get('variant_price') or '0', label='variant price'),
            variant_id=data.get('variant_id'),
            variant_name=data.get('variant_name'),
            modifiers=[CartModifier.from_dict(m) for m in data.get('modifiers') or []],
        )
        line.recompute()
        return line


@dataclass
class Cart:
    """In-progress sale owned by one cashier session.

    Derived amounts are recomputed from the lines on every read. Tax is
    rounded half-up to cents so that ``total == subtotal + tax`` exactly.
    """

    lines: list[CartLine] = field(default_factory=list)
    loyalty_phone: str | None = None
    tax_rate: Decimal = field(default_factory=lambda: settings.tax_rate)

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self.lines):
            raise CartIndexError(f'Cart line {index} does not exist')

    def add_item(self, line: CartLine) -> CartLine:
        if line.quantity < 1:
            raise ValueError('Quantity must be at least 1')
        if to_decimal(line.base_price, label='price') < 0 or to_decimal(line.variant_price, label='variant price') < 0:
            raise ValueError('Price cannot be negative')
        if any(to_decimal(modifier.price, label='modifier price') < 0 for modifier in line.modifiers):
            raise ValueError('Modifier price cannot be negative')
        line.recompute()
        self.lines.append(line)
        return line

    def update_quantity(self, index: int, quantity: int) -> None:
        self._check_index(index)
        if quantity <= 0:
            del self.lines[index]
            return
        line = self.lines[index]
        line.quantity = quantity
        line.recompute()

    def remove_item(self, index: int) -> None:
        self._check_index(index)
        del self.lines[index]

    def clear(self) -> None:
        self.lines = []
        self.loyalty_phone = None

    def set_loyalty_phone(self, phone: str | None) -> None:
        clean = (phone or '').strip()
        self.loyalty_phone = clean or None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal('0'))

    @property
    def tax(self) -> Decimal:
        return money(self.subtotal * self.tax_rate)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax

    def to_dict(self) -> dict:
        return {
            'items': [line.to_dict() for line in self.lines],
            'loyalty_phone': self.loyalty_phone,
        }

    @classmethod
    def from_dict(cls, data: dict, *, tax_rate: Decimal | None = None) -> Cart:
        cart = cls(
            lines=[CartLine.from_dict(item) for item in data.get('items') or []],
            loyalty_phone=data.get('loyalty_phone'),
        )
        if tax_rate is not None:
            cart.tax_rate = tax_rate
        return cart


def load_cart(store: LocalStateStore, profile_id: int) -> Cart:
    payload = store.load(profile_id, CART_STATE_KEY)
    if payload is None:
        return Cart()
    try:
        return Cart.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise LocalStateDecodeError('Stored cart could not be decoded') from exc


def save_cart(store: LocalStateStore, profile_id: int, cart: Cart) -> None:
    store.save(profile_id, CART_STATE_KEY, cart.to_dict())


def cart_view(cart: Cart) -> dict:
    return {
        'items': [line.to_dict() for line in cart.lines],
        'loyalty_phone': cart.loyalty_phone,
        'subtotal': str(money(cart.subtotal)),
        'tax': str(cart.tax),
        'total': str(money(cart.total)),
        'tax_rate': str(cart.tax_rate),
    }
