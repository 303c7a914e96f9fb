from decimal import Decimal

from sqlalchemy import select

from cafe_pos.db import SessionLocal
from cafe_pos.models import (
    Category,
    Ingredient,
    LoyaltyConditionType,
    LoyaltyRewardType,
    LoyaltyRule,
    Product,
    ProductIngredient,
    Profile,
    ProfileRole,
    ProfileStatus,
)
from cafe_pos.security.passwords import hash_password


def _ensure_profile(db, *, email: str, full_name: str, role: ProfileRole, password: str) -> None:
    profile = db.execute(select(Profile).where(Profile.email == email)).scalar_one_or_none()
    if not profile:
        db.add(
            Profile(
                email=email,
                full_name=full_name,
                role=role,
                status=ProfileStatus.ACTIVE,
                password_hash=hash_password(password),
            )
        )


def _ensure_category(db, *, name: str, icon: str, sort_order: int) -> Category:
    category = db.execute(select(Category).where(Category.name == name)).scalar_one_or_none()
    if not category:
        category = Category(name=name, icon=icon, sort_order=sort_order)
        db.add(category)
        db.flush()
    return category


def _ensure_ingredient(db, *, name: str, unit: str, stock: str, min_level: str, cost: str) -> Ingredient:
    ingredient = db.execute(select(Ingredient).where(Ingredient.name == name)).scalar_one_or_none()
    if not ingredient:
        ingredient = Ingredient(
            name=name,
            unit=unit,
            current_stock=Decimal(stock),
            min_stock_level=Decimal(min_level),
            cost_per_unit=Decimal(cost),
        )
        db.add(ingredient)
        db.flush()
    return ingredient


def _ensure_product(db, *, name: str, price: str, category: Category, recipe: list[tuple[Ingredient, str]]) -> None:
    product = db.execute(select(Product).where(Product.name == name)).scalar_one_or_none()
    if product:
        return
    product = Product(name=name, base_price=Decimal(price), category_id=category.id, is_active=True)
    db.add(product)
    db.flush()
    for ingredient, quantity in recipe:
        db.add(ProductIngredient(product_id=product.id, ingredient_id=ingredient.id, quantity=Decimal(quantity)))


def seed() -> None:
    with SessionLocal() as db:
        _ensure_profile(db, email='admin@cafe.local', full_name='Administrador', role=ProfileRole.ADMIN, password='adminpass')
        _ensure_profile(db, email='caja1@cafe.local', full_name='Cajero Uno', role=ProfileRole.CASHIER, password='cajapass')

        coffee = _ensure_category(db, name='Cafés', icon='coffee', sort_order=0)
        bakery = _ensure_category(db, name='Panadería', icon='croissant', sort_order=1)
        drinks = _ensure_category(db, name='Bebidas', icon='cup-soda', sort_order=2)

        beans = _ensure_ingredient(db, name='Café en grano', unit='KG', stock='5', min_level='1', cost='45.00')
        milk = _ensure_ingredient(db, name='Leche', unit='L', stock='20', min_level='4', cost='4.50')
        cups = _ensure_ingredient(db, name='Vaso 12oz', unit='UND', stock='300', min_level='50', cost='0.30')
        croissant = _ensure_ingredient(db, name='Croissant', unit='UND', stock='24', min_level='6', cost='2.00')
        water = _ensure_ingredient(db, name='Agua mineral', unit='UND', stock='48', min_level='12', cost='1.20')

        _ensure_product(db, name='Espresso', price='6.00', category=coffee, recipe=[(beans, '0.018'), (cups, '1')])
        _ensure_product(
            db,
            name='Latte',
            price='9.50',
            category=coffee,
            recipe=[(beans, '0.018'), (milk, '0.250'), (cups, '1')],
        )
        _ensure_product(db, name='Croissant', price='7.00', category=bakery, recipe=[(croissant, '1')])
        _ensure_product(db, name='Agua mineral', price='4.00', category=drinks, recipe=[(water, '1')])

        rule = db.execute(select(LoyaltyRule).where(LoyaltyRule.name == 'Décima visita')).scalar_one_or_none()
        if not rule:
            db.add(
                LoyaltyRule(
                    name='Décima visita',
                    condition_type=LoyaltyConditionType.VISIT_COUNT,
                    condition_value=Decimal('10'),
                    reward_type=LoyaltyRewardType.FREE_PRODUCT,
                    reward_value='Latte',
                    is_active=True,
                )
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
