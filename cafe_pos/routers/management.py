from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from cafe_pos.auth import Principal, admin_access
from cafe_pos.db import get_db
from cafe_pos.dependencies import get_client_ip, service_error
from cafe_pos.schemas import (
    AdjustmentIn,
    CategoryIn,
    CustomerIn,
    IngredientIn,
    LoyaltyRuleIn,
    ProductIn,
    ProfileCreateIn,
    ProfileUpdateIn,
    PurchaseIn,
    SupplierIn,
)
from cafe_pos.security.csrf import verify_csrf
from cafe_pos.services.audit_service import log_audit
from cafe_pos.services.catalog_service import (
    RecipeItemInput,
    create_product,
    delete_category,
    delete_product,
    list_categories,
    list_products,
    save_category,
    update_product,
)
from cafe_pos.services.inventory_service import (
    adjust_stock,
    create_ingredient,
    delete_supplier,
    inventory_kpis,
    list_ingredients,
    list_stock_logs,
    list_suppliers,
    register_purchase,
    save_supplier,
    update_ingredient,
)
from cafe_pos.services.loyalty_service import (
    delete_card,
    delete_rule,
    list_cards,
    list_rules,
    loyalty_dashboard,
    save_card,
    save_rule,
    toggle_rule,
)
from cafe_pos.services.people_service import create_profile, list_profiles, toggle_profile_status, update_profile

router = APIRouter(prefix='/management', tags=['management'])


def _audit(db: Session, request: Request, principal: Principal, action: str, entity_id: int | None, **metadata) -> None:
    log_audit(
        db,
        actor_profile_id=principal.id,
        action=action,
        entity_id=entity_id,
        ip=get_client_ip(request),
        metadata=metadata,
    )


def _recipe(payload: ProductIn) -> list[RecipeItemInput] | None:
    if payload.recipe is None:
        return None
    return [RecipeItemInput(ingredient_id=item.ingredient_id, quantity=item.quantity) for item in payload.recipe]


@router.get('/categories')
def categories(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_categories(db, search=search)


@router.post('/categories')
def create_category_submit(
    payload: CategoryIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        category = save_category(db, name=payload.name, icon=payload.icon, sort_order=payload.sort_order)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CATEGORY_CREATED', category.id, name=category.name)
    db.commit()
    return {'id': category.id, 'name': category.name, 'icon': category.icon, 'sort_order': category.sort_order}


@router.put('/categories/{category_id}')
def update_category_submit(
    category_id: int,
    payload: CategoryIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        category = save_category(
            db,
            category_id=category_id,
            name=payload.name,
            icon=payload.icon,
            sort_order=payload.sort_order,
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CATEGORY_UPDATED', category.id, name=category.name)
    db.commit()
    return {'id': category.id, 'name': category.name, 'icon': category.icon, 'sort_order': category.sort_order}


@router.delete('/categories/{category_id}')
def delete_category_submit(
    category_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_category(db, category_id=category_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CATEGORY_DELETED', category_id)
    db.commit()
    return {'ok': True}


@router.get('/products')
def products(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_products(db, search=search)


@router.post('/products')
def create_product_submit(
    payload: ProductIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        product = create_product(
            db,
            name=payload.name,
            category_id=payload.category_id,
            base_price=payload.base_price,
            description=payload.description,
            image_url=payload.image_url,
            compound=payload.compound,
            recipe=_recipe(payload),
            unit=payload.unit,
            cost=payload.cost or '0',
        )
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc
    _audit(db, request, principal, 'PRODUCT_CREATED', product.id, name=product.name, compound=payload.compound)
    db.commit()
    return {'id': product.id, 'name': product.name, 'base_price': product.base_price}


@router.put('/products/{product_id}')
def update_product_submit(
    product_id: int,
    payload: ProductIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        product = update_product(
            db,
            product_id=product_id,
            name=payload.name,
            category_id=payload.category_id,
            base_price=payload.base_price,
            description=payload.description,
            image_url=payload.image_url,
            is_active=payload.is_active,
            recipe=_recipe(payload),
        )
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc
    _audit(db, request, principal, 'PRODUCT_UPDATED', product.id, name=product.name)
    db.commit()
    return {'id': product.id, 'name': product.name, 'base_price': product.base_price}


@router.delete('/products/{product_id}')
def delete_product_submit(
    product_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_product(db, product_id=product_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'PRODUCT_DELETED', product_id)
    db.commit()
    return {'ok': True}


@router.get('/ingredients')
def ingredients(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_ingredients(db, search=search)


@router.get('/ingredients/kpis')
def ingredients_kpis(principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return inventory_kpis(db)


@router.get('/ingredients/logs')
def ingredients_logs(principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_stock_logs(db)


@router.post('/ingredients')
def create_ingredient_submit(
    payload: IngredientIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        ingredient = create_ingredient(
            db,
            name=payload.name,
            unit=payload.unit,
            current_stock=payload.current_stock,
            min_stock_level=payload.min_stock_level,
            cost_per_unit=payload.cost_per_unit,
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'INGREDIENT_CREATED', ingredient.id, name=ingredient.name)
    db.commit()
    return {'id': ingredient.id, 'name': ingredient.name}


@router.put('/ingredients/{ingredient_id}')
def update_ingredient_submit(
    ingredient_id: int,
    payload: IngredientIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        ingredient = update_ingredient(
            db,
            ingredient_id=ingredient_id,
            name=payload.name,
            unit=payload.unit,
            min_stock_level=payload.min_stock_level,
            cost_per_unit=payload.cost_per_unit,
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'INGREDIENT_UPDATED', ingredient.id, name=ingredient.name)
    db.commit()
    return {'id': ingredient.id, 'name': ingredient.name}


@router.post('/ingredients/{ingredient_id}/purchase')
def purchase_submit(
    ingredient_id: int,
    payload: PurchaseIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        log = register_purchase(
            db,
            ingredient_id=ingredient_id,
            quantity=payload.quantity,
            cost=payload.cost,
            supplier=payload.supplier,
            actor_profile_id=principal.id,
        )
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc
    _audit(db, request, principal, 'STOCK_PURCHASED', ingredient_id, quantity=str(log.change_amount), reason=log.reason)
    db.commit()
    return {'ok': True, 'reason': log.reason}


@router.post('/ingredients/{ingredient_id}/adjust')
def adjust_submit(
    ingredient_id: int,
    payload: AdjustmentIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        log = adjust_stock(db, ingredient_id=ingredient_id, adjustment=payload.adjustment, actor_profile_id=principal.id)
    except ValueError as exc:
        db.rollback()
        raise service_error(exc) from exc
    _audit(db, request, principal, 'STOCK_ADJUSTED', ingredient_id, quantity=str(log.change_amount))
    db.commit()
    return {'ok': True, 'reason': log.reason}


@router.get('/suppliers')
def suppliers(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_suppliers(db, search=search)


@router.post('/suppliers')
def create_supplier_submit(
    payload: SupplierIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        supplier = save_supplier(db, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'SUPPLIER_CREATED', supplier.id, name=supplier.name)
    db.commit()
    return {'id': supplier.id, 'name': supplier.name}


@router.put('/suppliers/{supplier_id}')
def update_supplier_submit(
    supplier_id: int,
    payload: SupplierIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        supplier = save_supplier(db, supplier_id=supplier_id, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'SUPPLIER_UPDATED', supplier.id, name=supplier.name)
    db.commit()
    return {'id': supplier.id, 'name': supplier.name}


@router.delete('/suppliers/{supplier_id}')
def delete_supplier_submit(
    supplier_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_supplier(db, supplier_id=supplier_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'SUPPLIER_DELETED', supplier_id)
    db.commit()
    return {'ok': True}


@router.get('/customers')
def customers(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_cards(db, search=search)


@router.post('/customers')
def create_customer_submit(
    payload: CustomerIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        card = save_card(db, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CUSTOMER_CREATED', card.id, document=card.phone)
    db.commit()
    return {'id': card.id, 'name': card.name, 'phone': card.phone}


@router.put('/customers/{card_id}')
def update_customer_submit(
    card_id: int,
    payload: CustomerIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        card = save_card(db, card_id=card_id, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CUSTOMER_UPDATED', card.id, document=card.phone)
    db.commit()
    return {'id': card.id, 'name': card.name, 'phone': card.phone}


@router.delete('/customers/{card_id}')
def delete_customer_submit(
    card_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_card(db, card_id=card_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'CUSTOMER_DELETED', card_id)
    db.commit()
    return {'ok': True}


@router.get('/loyalty/dashboard')
def loyalty_overview(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return loyalty_dashboard(db, search=search)


@router.get('/loyalty/rules')
def loyalty_rules(principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_rules(db)


@router.post('/loyalty/rules')
def create_rule_submit(
    payload: LoyaltyRuleIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        rule = save_rule(db, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'LOYALTY_RULE_CREATED', rule.id, name=rule.name)
    db.commit()
    return {'id': rule.id, 'name': rule.name, 'is_active': rule.is_active}


@router.put('/loyalty/rules/{rule_id}')
def update_rule_submit(
    rule_id: int,
    payload: LoyaltyRuleIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        rule = save_rule(db, rule_id=rule_id, **payload.model_dump())
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'LOYALTY_RULE_UPDATED', rule.id, name=rule.name)
    db.commit()
    return {'id': rule.id, 'name': rule.name, 'is_active': rule.is_active}


@router.post('/loyalty/rules/{rule_id}/toggle')
def toggle_rule_submit(
    rule_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        rule = toggle_rule(db, rule_id=rule_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'LOYALTY_RULE_TOGGLED', rule.id, is_active=rule.is_active)
    db.commit()
    return {'id': rule.id, 'is_active': rule.is_active}


@router.delete('/loyalty/rules/{rule_id}')
def delete_rule_submit(
    rule_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_rule(db, rule_id=rule_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'LOYALTY_RULE_DELETED', rule_id)
    db.commit()
    return {'ok': True}


@router.get('/users')
def users(search: str | None = None, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_profiles(db, search=search)


@router.post('/users')
def create_user_submit(
    payload: ProfileCreateIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        profile = create_profile(
            db,
            email=payload.email,
            full_name=payload.full_name,
            role=payload.role,
            password=payload.password,
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'USER_CREATED', profile.id, email=profile.email, role=profile.role.value)
    db.commit()
    return {'id': profile.id, 'email': profile.email, 'role': profile.role.value, 'status': profile.status.value}


@router.put('/users/{profile_id}')
def update_user_submit(
    profile_id: int,
    payload: ProfileUpdateIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        profile = update_profile(db, profile_id=profile_id, full_name=payload.full_name, role=payload.role)
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'USER_UPDATED', profile.id, role=profile.role.value)
    db.commit()
    return {'id': profile.id, 'email': profile.email, 'role': profile.role.value, 'status': profile.status.value}


@router.post('/users/{profile_id}/toggle')
def toggle_user_submit(
    profile_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        profile = toggle_profile_status(db, profile_id=profile_id, actor_profile_id=principal.id)
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise service_error(exc) from exc
    _audit(db, request, principal, 'USER_STATUS_CHANGED', profile.id, status=profile.status.value)
    db.commit()
    return {'id': profile.id, 'status': profile.status.value}
