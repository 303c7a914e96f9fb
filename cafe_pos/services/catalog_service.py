from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cafe_pos.models import Category, Ingredient, Product, ProductIngredient, utcnow
from cafe_pos.services.cart_service import to_decimal
from cafe_pos.services.inventory_service import create_ingredient


@dataclass(frozen=True)
class RecipeItemInput:
    ingredient_id: int
    quantity: Decimal


def _get_category(db: Session, category_id: int) -> Category:
    category = db.execute(select(Category).where(Category.id == category_id)).scalar_one_or_none()
    if not category:
        raise ValueError('Category not found')
    return category


def _get_product(db: Session, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product:
        raise ValueError('Product not found')
    return product


def list_categories(db: Session, *, search: str | None = None) -> list[dict]:
    rows = db.execute(select(Category).order_by(Category.sort_order.asc(), Category.name.asc())).scalars().all()
    needle = (search or '').strip().lower()
    return [
        {'id': row.id, 'name': row.name, 'icon': row.icon, 'sort_order': row.sort_order}
        for row in rows
        if not needle or needle in row.name.lower()
    ]


def save_category(
    db: Session,
    *,
    category_id: int | None = None,
    name: str,
    icon: str | None = None,
    sort_order: int | None = None,
) -> Category:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('Category name is required')

    if category_id is None:
        category = Category()
        if sort_order is None:
            max_order = db.execute(select(func.max(Category.sort_order))).scalar_one_or_none()
            sort_order = (max_order + 1) if max_order is not None else 0
        db.add(category)
    else:
        category = _get_category(db, category_id)

    category.name = clean_name
    category.icon = (icon or '').strip() or None
    if sort_order is not None:
        category.sort_order = sort_order
    db.flush()
    return category


def delete_category(db: Session, *, category_id: int) -> None:
    category = _get_category(db, category_id)
    db.delete(category)
    db.flush()


def _recipe_rows(db: Session, product_ids: list[int]) -> dict[int, list[dict]]:
    recipes: dict[int, list[dict]] = {product_id: [] for product_id in product_ids}
    if not product_ids:
        return recipes
    rows = db.execute(
        select(ProductIngredient, Ingredient.name, Ingredient.unit)
        .join(Ingredient, Ingredient.id == ProductIngredient.ingredient_id)
        .where(ProductIngredient.product_id.in_(product_ids))
        .order_by(ProductIngredient.id.asc())
    ).all()
    for link, ingredient_name, unit in rows:
        recipes[link.product_id].append(
            {
                'ingredient_id': link.ingredient_id,
                'ingredient_name': ingredient_name,
                'quantity': link.quantity,
                'unit': unit,
            }
        )
    return recipes


def is_compound(product_name: str, recipe: list[dict]) -> bool:
    # Simple products carry exactly one same-named ingredient.
    if len(recipe) > 1:
        return True
    return len(recipe) == 1 and recipe[0]['ingredient_name'] != product_name


def list_products(db: Session, *, search: str | None = None) -> list[dict]:
    rows = db.execute(
        select(Product, Category.name)
        .outerjoin(Category, Category.id == Product.category_id)
        .order_by(Product.name.asc())
    ).all()
    recipes = _recipe_rows(db, [product.id for product, _ in rows])
    needle = (search or '').strip().lower()

    result = []
    for product, category_name in rows:
        if needle and needle not in product.name.lower() and needle not in (category_name or '').lower():
            continue
        recipe = recipes[product.id]
        result.append(
            {
                'id': product.id,
                'name': product.name,
                'description': product.description,
                'base_price': product.base_price,
                'category_id': product.category_id,
                'category_name': category_name,
                'image_url': product.image_url,
                'is_active': product.is_active,
                'ingredients_count': len(recipe),
                'is_compound': is_compound(product.name, recipe),
                'recipe': recipe,
            }
        )
    return result


def list_pos_catalog(db: Session, *, category_id: int | None = None, search: str | None = None) -> dict:
    query = select(Product).where(Product.is_active.is_(True)).order_by(Product.name.asc())
    if category_id is not None:
        query = query.where(Product.category_id == category_id)
    needle = (search or '').strip().lower()
    products = [
        {
            'id': product.id,
            'name': product.name,
            'base_price': product.base_price,
            'category_id': product.category_id,
            'image_url': product.image_url,
        }
        for product in db.execute(query).scalars().all()
        if not needle or needle in product.name.lower()
    ]
    return {'categories': list_categories(db), 'products': products}


def get_sellable_product(db: Session, *, product_id: int) -> Product:
    product = db.execute(
        select(Product).where(Product.id == product_id, Product.is_active.is_(True))
    ).scalar_one_or_none()
    if not product:
        raise ValueError('Product not found')
    return product


def _validate_product_fields(db: Session, *, name: str, category_id: int | None, base_price) -> tuple[str, Decimal]:
    clean_name = (name or '').strip()
    if not clean_name or category_id is None or base_price in (None, ''):
        raise ValueError('Name, category and price are required')
    _get_category(db, category_id)
    price = to_decimal(base_price, label='price')
    if price < 0:
        raise ValueError('Price cannot be negative')
    return clean_name, price


def _validate_recipe(db: Session, recipe: list[RecipeItemInput]) -> None:
    seen: set[int] = set()
    for item in recipe:
        if item.quantity <= 0:
            raise ValueError('Recipe quantities must be greater than zero')
        if item.ingredient_id in seen:
            raise ValueError('Each ingredient can appear only once in a recipe')
        seen.add(item.ingredient_id)
        exists = db.execute(select(Ingredient.id).where(Ingredient.id == item.ingredient_id)).scalar_one_or_none()
        if exists is None:
            raise ValueError('Ingredient not found')


def create_product(
    db: Session,
    *,
    name: str,
    category_id: int | None,
    base_price,
    description: str | None = None,
    image_url: str | None = None,
    compound: bool = False,
    recipe: list[RecipeItemInput] | None = None,
    unit: str = 'UND',
    cost=Decimal('0'),
) -> Product:
    """Create a product with its stock link.

    Simple products get their own same-named ingredient tracked 1:1; compound
    products consume existing ingredients through the given recipe.
    """
    clean_name, price = _validate_product_fields(db, name=name, category_id=category_id, base_price=base_price)
    recipe = recipe or []
    if compound:
        if not recipe:
            raise ValueError('A compound product needs at least one ingredient')
        _validate_recipe(db, recipe)

    product = Product(
        name=clean_name,
        category_id=category_id,
        base_price=price,
        description=(description or '').strip() or None,
        image_url=(image_url or '').strip() or None,
        is_active=True,
    )
    db.add(product)
    db.flush()

    if compound:
        db.add_all(
            [
                ProductIngredient(product_id=product.id, ingredient_id=item.ingredient_id, quantity=item.quantity)
                for item in recipe
            ]
        )
    else:
        ingredient = create_ingredient(db, name=clean_name, unit=unit, current_stock=Decimal('0'), cost_per_unit=cost or Decimal('0'))
        db.add(ProductIngredient(product_id=product.id, ingredient_id=ingredient.id, quantity=Decimal('1')))
    db.flush()
    return product


def update_product(
    db: Session,
    *,
    product_id: int,
    name: str,
    category_id: int | None,
    base_price,
    description: str | None = None,
    image_url: str | None = None,
    is_active: bool = True,
    recipe: list[RecipeItemInput] | None = None,
) -> Product:
    product = _get_product(db, product_id)
    clean_name, price = _validate_product_fields(db, name=name, category_id=category_id, base_price=base_price)

    product.name = clean_name
    product.category_id = category_id
    product.base_price = price
    product.description = (description or '').strip() or None
    product.image_url = (image_url or '').strip() or None
    product.is_active = is_active
    product.updated_at = utcnow()

    if recipe is not None:
        if not recipe:
            raise ValueError('A product needs at least one ingredient')
        _validate_recipe(db, recipe)
        db.execute(delete(ProductIngredient).where(ProductIngredient.product_id == product.id))
        db.add_all(
            [
                ProductIngredient(product_id=product.id, ingredient_id=item.ingredient_id, quantity=item.quantity)
                for item in recipe
            ]
        )
    db.flush()
    return product


def delete_product(db: Session, *, product_id: int) -> None:
    product = _get_product(db, product_id)
    db.execute(delete(ProductIngredient).where(ProductIngredient.product_id == product.id))
    db.delete(product)
    db.flush()
