from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cafe_pos.models import (
    Base,
    Category,
    Ingredient,
    Order,
    PaymentMethod,
    Product,
    ProductIngredient,
    Profile,
    ProfileRole,
    ProfileStatus,
)


def make_session_factory(*, foreign_keys: bool = False):
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    if foreign_keys:
        event.listen(engine, 'connect', lambda dbapi_connection, _: dbapi_connection.execute('PRAGMA foreign_keys=ON'))
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_profile(db, *, email: str = 'caja@cafe.local', role: ProfileRole = ProfileRole.CASHIER, password_hash: str = 'x') -> Profile:
    profile = Profile(
        email=email,
        full_name=email.split('@')[0].title(),
        password_hash=password_hash,
        role=role,
        status=ProfileStatus.ACTIVE,
    )
    db.add(profile)
    db.flush()
    return profile


def make_ingredient(db, *, name: str, stock: str = '100', min_level: str = '0', cost: str = '0') -> Ingredient:
    ingredient = Ingredient(
        name=name,
        unit='UND',
        current_stock=Decimal(stock),
        min_stock_level=Decimal(min_level),
        cost_per_unit=Decimal(cost),
    )
    db.add(ingredient)
    db.flush()
    return ingredient


def make_product(db, *, name: str, price: str, recipe: list[tuple[Ingredient, str]] = ()) -> Product:
    category = Category(name=f'{name} category', sort_order=0)
    db.add(category)
    db.flush()
    product = Product(name=name, base_price=Decimal(price), category_id=category.id, is_active=True)
    db.add(product)
    db.flush()
    for ingredient, quantity in recipe:
        db.add(ProductIngredient(product_id=product.id, ingredient_id=ingredient.id, quantity=Decimal(quantity)))
    db.flush()
    return product


def make_order(
    db,
    *,
    cashier_id: int,
    total: str,
    created_at: datetime,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    number: str | None = None,
    loyalty_phone: str | None = None,
) -> Order:
    amount = Decimal(total)
    order = Order(
        order_number=number or f'T-{created_at.timestamp()}-{total}',
        cashier_id=cashier_id,
        subtotal=amount,
        tax=Decimal('0.00'),
        total=amount,
        payment_method=payment_method,
        amount_paid=amount,
        change_amount=Decimal('0.00'),
        loyalty_phone=loyalty_phone,
        created_at=created_at,
    )
    db.add(order)
    db.flush()
    return order
