from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from cafe_pos.models import Ingredient, Order, Profile, ProductIngredient, StockLog, Supplier
from cafe_pos.services.cart_service import to_decimal

STOCK_LOG_LIMIT = 100


def _clean(value: str | None) -> str | None:
    clean = (value or '').strip()
    return clean or None


def _get_ingredient(db: Session, ingredient_id: int) -> Ingredient:
    ingredient = db.execute(select(Ingredient).where(Ingredient.id == ingredient_id)).scalar_one_or_none()
    if not ingredient:
        raise ValueError('Ingredient not found')
    return ingredient


def increment_stock(db: Session, *, ingredient_id: int, quantity: Decimal) -> None:
    # Single UPDATE so concurrent sales and purchases never lose an increment.
    result = db.execute(
        update(Ingredient)
        .where(Ingredient.id == ingredient_id)
        .values(current_stock=Ingredient.current_stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ValueError('Ingredient not found')


def _log_movement(
    db: Session,
    *,
    ingredient_id: int,
    change_amount: Decimal,
    reason: str,
    order_id: int | None = None,
    actor_profile_id: int | None = None,
) -> StockLog:
    log = StockLog(
        ingredient_id=ingredient_id,
        change_amount=change_amount,
        reason=reason,
        order_id=order_id,
        actor_profile_id=actor_profile_id,
    )
    db.add(log)
    return log


def list_ingredients(db: Session, *, search: str | None = None) -> list[dict]:
    rows = db.execute(select(Ingredient).order_by(Ingredient.name.asc())).scalars().all()
    needle = (search or '').strip().lower()
    return [
        {
            'id': row.id,
            'name': row.name,
            'unit': row.unit,
            'current_stock': row.current_stock,
            'min_stock_level': row.min_stock_level,
            'cost_per_unit': row.cost_per_unit,
            'low_stock': row.current_stock <= row.min_stock_level,
        }
        for row in rows
        if not needle or needle in row.name.lower()
    ]


def inventory_kpis(db: Session) -> dict:
    rows = db.execute(select(Ingredient)).scalars().all()
    total_value = sum((row.current_stock * (row.cost_per_unit or Decimal('0')) for row in rows), Decimal('0'))
    return {
        'total_items': len(rows),
        'total_value': total_value.quantize(Decimal('0.01')),
        'low_stock_count': sum(1 for row in rows if row.current_stock <= row.min_stock_level),
    }


def low_stock_count(db: Session) -> int:
    return len(
        db.execute(select(Ingredient.id).where(Ingredient.current_stock <= Ingredient.min_stock_level)).all()
    )


def create_ingredient(
    db: Session,
    *,
    name: str,
    unit: str = 'UND',
    current_stock=Decimal('0'),
    min_stock_level=Decimal('0'),
    cost_per_unit=Decimal('0'),
) -> Ingredient:
    clean_name = name.strip()
    if not clean_name:
        raise ValueError('Ingredient name is required')
    ingredient = Ingredient(
        name=clean_name,
        unit=(unit or 'UND').strip() or 'UND',
        current_stock=to_decimal(current_stock, label='stock'),
        min_stock_level=to_decimal(min_stock_level, label='minimum stock'),
        cost_per_unit=to_decimal(cost_per_unit, label='cost'),
    )
    if ingredient.min_stock_level < 0 or ingredient.cost_per_unit < 0:
        raise ValueError('Minimum stock and cost cannot be negative')
    db.add(ingredient)
    db.flush()
    return ingredient


def update_ingredient(
    db: Session,
    *,
    ingredient_id: int,
    name: str,
    unit: str,
    min_stock_level,
    cost_per_unit,
) -> Ingredient:
    ingredient = _get_ingredient(db, ingredient_id)
    clean_name = name.strip()
    if not clean_name:
        raise ValueError('Ingredient name is required')
    min_level = to_decimal(min_stock_level, label='minimum stock')
    cost = to_decimal(cost_per_unit, label='cost')
    if min_level < 0 or cost < 0:
        raise ValueError('Minimum stock and cost cannot be negative')
    ingredient.name = clean_name
    ingredient.unit = (unit or 'UND').strip() or 'UND'
    ingredient.min_stock_level = min_level
    ingredient.cost_per_unit = cost
    db.flush()
    return ingredient


def register_purchase(
    db: Session,
    *,
    ingredient_id: int,
    quantity,
    cost=None,
    supplier: str | None = None,
    actor_profile_id: int | None = None,
) -> StockLog:
    if quantity is None or str(quantity).strip() == '':
        raise ValueError('Quantity is required')
    qty = to_decimal(quantity, label='quantity')
    if qty <= 0:
        raise ValueError('Purchase quantity must be greater than zero')
    unit_cost = to_decimal(cost, label='cost') if cost not in (None, '') else Decimal('0')

    increment_stock(db, ingredient_id=ingredient_id, quantity=qty)
    log = _log_movement(
        db,
        ingredient_id=ingredient_id,
        change_amount=qty,
        reason=f'Compra: {_clean(supplier) or "General"}',
        actor_profile_id=actor_profile_id,
    )
    if unit_cost > 0:
        db.execute(
            update(Ingredient)
            .where(Ingredient.id == ingredient_id)
            .values(cost_per_unit=unit_cost)
            .execution_options(synchronize_session=False)
        )
    db.flush()
    return log


def adjust_stock(
    db: Session,
    *,
    ingredient_id: int,
    adjustment,
    actor_profile_id: int | None = None,
) -> StockLog:
    if adjustment is None or str(adjustment).strip() == '':
        raise ValueError('Adjustment is required')
    delta = to_decimal(adjustment, label='adjustment')
    if delta == 0:
        raise ValueError('Adjustment cannot be zero')
    increment_stock(db, ingredient_id=ingredient_id, quantity=delta)
    log = _log_movement(
        db,
        ingredient_id=ingredient_id,
        change_amount=delta,
        reason='Ajuste Manual',
        actor_profile_id=actor_profile_id,
    )
    db.flush()
    return log


def deduct_stock_for_order(
    db: Session,
    *,
    order_id: int,
    order_number: str,
    quantities_by_product: dict[int, int],
    actor_profile_id: int | None = None,
) -> int:
    if not quantities_by_product:
        return 0
    recipe_rows = db.execute(
        select(ProductIngredient).where(ProductIngredient.product_id.in_(list(quantities_by_product)))
    ).scalars().all()

    moved = 0
    for row in recipe_rows:
        consumed = row.quantity * quantities_by_product[row.product_id]
        increment_stock(db, ingredient_id=row.ingredient_id, quantity=-consumed)
        _log_movement(
            db,
            ingredient_id=row.ingredient_id,
            change_amount=-consumed,
            reason=f'Venta {order_number}',
            order_id=order_id,
            actor_profile_id=actor_profile_id,
        )
        moved += 1
    return moved


def list_stock_logs(db: Session, *, limit: int = STOCK_LOG_LIMIT) -> list[dict]:
    rows = db.execute(
        select(StockLog, Ingredient.name, Profile.full_name, Profile.email)
        .join(Ingredient, Ingredient.id == StockLog.ingredient_id)
        .outerjoin(Order, Order.id == StockLog.order_id)
        .outerjoin(Profile, Profile.id == Order.cashier_id)
        .order_by(StockLog.created_at.desc(), StockLog.id.desc())
        .limit(limit)
    ).all()
    return [
        {
            'id': log.id,
            'created_at': log.created_at,
            'ingredient_name': ingredient_name,
            'change_amount': log.change_amount,
            'reason': log.reason,
            'order_id': log.order_id,
            'cashier_name': full_name or (email.split('@')[0] if email else None),
        }
        for log, ingredient_name, full_name, email in rows
    ]


def list_suppliers(db: Session, *, search: str | None = None) -> list[dict]:
    rows = db.execute(select(Supplier).order_by(Supplier.name.asc())).scalars().all()
    needle = (search or '').strip().lower()
    return [
        {
            'id': row.id,
            'name': row.name,
            'ruc': row.ruc,
            'contact_name': row.contact_name,
            'phone': row.phone,
            'email': row.email,
            'address': row.address,
        }
        for row in rows
        if not needle or needle in row.name.lower() or needle in (row.ruc or '')
    ]


def save_supplier(db: Session, *, supplier_id: int | None = None, **fields) -> Supplier:
    clean_name = (fields.get('name') or '').strip()
    if not clean_name:
        raise ValueError('Supplier name is required')

    if supplier_id is None:
        supplier = Supplier()
        db.add(supplier)
    else:
        supplier = db.execute(select(Supplier).where(Supplier.id == supplier_id)).scalar_one_or_none()
        if not supplier:
            raise ValueError('Supplier not found')

    supplier.name = clean_name
    for attr in ('ruc', 'contact_name', 'phone', 'email', 'address'):
        setattr(supplier, attr, _clean(fields.get(attr)))
    db.flush()
    return supplier


def delete_supplier(db: Session, *, supplier_id: int) -> None:
    supplier = db.execute(select(Supplier).where(Supplier.id == supplier_id)).scalar_one_or_none()
    if not supplier:
        raise ValueError('Supplier not found')
    db.delete(supplier)
    db.flush()
