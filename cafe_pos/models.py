from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
PrimaryKeyType = BigInteger().with_variant(Integer(), 'sqlite')


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class ProfileRole(str, Enum):
    ADMIN = 'admin'
    CASHIER = 'cashier'


class ProfileStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    CARD = 'card'
    QR = 'qr'


class ShiftStatus(str, Enum):
    OPEN = 'open'
    CLOSED = 'closed'


class DocumentType(str, Enum):
    DNI = 'DNI'
    RUC = 'RUC'
    CE = 'CE'
    PASAPORTE = 'PASAPORTE'


class LoyaltyConditionType(str, Enum):
    TICKET_SPENDING = 'ticket_spending'
    TOTAL_SPENDING = 'total_spending'
    VISIT_COUNT = 'visit_count'


class LoyaltyRewardType(str, Enum):
    FREE_PRODUCT = 'free_product'
    CUSTOM = 'custom'


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[ProfileRole] = mapped_column(
        SQLEnum(ProfileRole, name='profile_role', values_callable=_enum_values),
        nullable=False,
        default=ProfileRole.CASHIER,
    )
    status: Mapped[ProfileStatus] = mapped_column(
        SQLEnum(ProfileStatus, name='profile_status', values_callable=_enum_values),
        nullable=False,
        default=ProfileStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    attempted_email: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    profile_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    actor_profile_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    profile_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('profiles.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Category(Base):
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('base_price >= 0', name='products_base_price_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('categories.id', ondelete='SET NULL'))
    image_url: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class Ingredient(Base):
    __tablename__ = 'ingredients'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, default='UND', server_default='UND')
    current_stock: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    min_stock_level: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal('0'), server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class ProductIngredient(Base):
    __tablename__ = 'product_ingredients'
    __table_args__ = (
        UniqueConstraint('product_id', 'ingredient_id', name='product_ingredients_product_ingredient_uniq'),
        CheckConstraint('quantity > 0', name='product_ingredients_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    ingredient_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('ingredients.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    ruc: Mapped[str | None] = mapped_column(String(32))
    contact_name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(32))
    email: Mapped[str | None] = mapped_column(String(320))
    address: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('order_number', name='orders_order_number_key'),
        UniqueConstraint('client_ref', name='orders_client_ref_key'),
        CheckConstraint('change_amount >= 0', name='orders_change_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False)
    cashier_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name='payment_method', values_callable=_enum_values), nullable=False
    )
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    change_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    loyalty_phone: Mapped[str | None] = mapped_column(String(32))
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    # Outbox entry id for orders replayed from a terminal queue.
    client_ref: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='order_items_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id', ondelete='SET NULL'))
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    variant_id: Mapped[str | None] = mapped_column(Text)
    variant_name: Mapped[str | None] = mapped_column(Text)
    modifiers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class Shift(Base):
    __tablename__ = 'shifts'
    __table_args__ = (
        Index(
            'shifts_one_open_per_cashier_idx',
            'cashier_id',
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        CheckConstraint('initial_cash >= 0', name='shifts_initial_cash_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    cashier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('profiles.id'), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    initial_cash: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_cash: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    expected_cash: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    status: Mapped[ShiftStatus] = mapped_column(
        SQLEnum(ShiftStatus, name='shift_status', values_callable=_enum_values),
        nullable=False,
        default=ShiftStatus.OPEN,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class LoyaltyCard(Base):
    __tablename__ = 'loyalty_cards'
    __table_args__ = (
        UniqueConstraint('phone', name='loyalty_cards_phone_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default='')
    email: Mapped[str | None] = mapped_column(String(320))
    # Document number; orders reference it through loyalty_phone.
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32))
    document_type: Mapped[DocumentType] = mapped_column(
        SQLEnum(DocumentType, name='document_type', values_callable=_enum_values),
        nullable=False,
        default=DocumentType.DNI,
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    visit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class LoyaltyRule(Base):
    __tablename__ = 'loyalty_rules'
    __table_args__ = (
        CheckConstraint('condition_value > 0', name='loyalty_rules_condition_positive_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    condition_type: Mapped[LoyaltyConditionType] = mapped_column(
        SQLEnum(LoyaltyConditionType, name='loyalty_condition_type', values_callable=_enum_values), nullable=False
    )
    condition_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reward_type: Mapped[LoyaltyRewardType] = mapped_column(
        SQLEnum(LoyaltyRewardType, name='loyalty_reward_type', values_callable=_enum_values), nullable=False
    )
    reward_value: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class StockLog(Base):
    __tablename__ = 'stock_logs'

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True)
    ingredient_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('ingredients.id', ondelete='CASCADE'), nullable=False)
    change_amount: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='SET NULL'))
    actor_profile_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
