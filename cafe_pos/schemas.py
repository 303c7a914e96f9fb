from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str
    password: str


class ModifierIn(BaseModel):
    id: str
    name: str
    price: Decimal = Decimal('0')


class CartItemIn(BaseModel):
    product_id: int
    quantity: int = 1
    variant_id: str | None = None
    variant_name: str | None = None
    variant_price: Decimal = Decimal('0')
    modifiers: list[ModifierIn] = Field(default_factory=list)


class CartQuantityIn(BaseModel):
    quantity: int


class LoyaltyPhoneIn(BaseModel):
    loyalty_phone: str | None = None


class CheckoutIn(BaseModel):
    payment_method: str
    amount_tendered: str | None = None


class OpenShiftIn(BaseModel):
    initial_cash: str | None = None


class CloseShiftIn(BaseModel):
    final_cash: str | None = None
    notes: str | None = None


class ConnectivityIn(BaseModel):
    is_online: bool


class CategoryIn(BaseModel):
    name: str
    icon: str | None = None
    sort_order: int | None = None


class RecipeItemIn(BaseModel):
    ingredient_id: int
    quantity: Decimal


class ProductIn(BaseModel):
    name: str
    category_id: int | None = None
    base_price: str | None = None
    description: str | None = None
    image_url: str | None = None
    is_active: bool = True
    compound: bool = False
    recipe: list[RecipeItemIn] | None = None
    unit: str = 'UND'
    cost: str | None = None


class IngredientIn(BaseModel):
    name: str
    unit: str = 'UND'
    current_stock: str = '0'
    min_stock_level: str = '0'
    cost_per_unit: str = '0'


class PurchaseIn(BaseModel):
    quantity: str | None = None
    cost: str | None = None
    supplier: str | None = None


class AdjustmentIn(BaseModel):
    adjustment: str | None = None


class SupplierIn(BaseModel):
    name: str
    ruc: str | None = None
    contact_name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None


class CustomerIn(BaseModel):
    document_number: str
    document_type: str = 'DNI'
    first_name: str | None = None
    last_name_paternal: str | None = None
    last_name_maternal: str | None = None
    email: str | None = None
    phone: str | None = None


class LoyaltyRuleIn(BaseModel):
    name: str
    condition_type: str
    condition_value: str
    reward_type: str
    reward_value: str
    is_active: bool = True


class ProfileCreateIn(BaseModel):
    email: str
    full_name: str | None = None
    role: str = 'cashier'
    password: str


class ProfileUpdateIn(BaseModel):
    full_name: str | None = None
    role: str
