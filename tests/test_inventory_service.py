from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select

from cafe_pos.models import Category, Ingredient, ProductIngredient, StockLog
from cafe_pos.services.catalog_service import (
    RecipeItemInput,
    create_product,
    list_pos_catalog,
    list_products,
    save_category,
    update_product,
)
from cafe_pos.services.inventory_service import (
    adjust_stock,
    inventory_kpis,
    list_stock_logs,
    register_purchase,
    save_supplier,
)
from tests.support import make_ingredient, make_session_factory


class CatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, factory = make_session_factory()
        self.db = factory()
        self.category = save_category(self.db, name='Cafés', icon='coffee')
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_categories_get_next_sort_order(self) -> None:
        second = save_category(self.db, name='Postres')
        self.assertEqual(self.category.sort_order, 0)
        self.assertEqual(second.sort_order, 1)
        with self.assertRaises(ValueError):
            save_category(self.db, name='   ')

    def test_simple_product_tracks_its_own_stock(self) -> None:
        product = create_product(self.db, name='Agua', category_id=self.category.id, base_price='3.50')
        self.db.commit()

        links = self.db.execute(select(ProductIngredient).where(ProductIngredient.product_id == product.id)).scalars().all()
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].quantity, Decimal('1'))
        ingredient = self.db.get(Ingredient, links[0].ingredient_id)
        self.assertEqual(ingredient.name, 'Agua')

        listed = list_products(self.db)
        self.assertEqual(len(listed), 1)
        self.assertFalse(listed[0]['is_compound'])
        self.assertEqual(listed[0]['category_name'], 'Cafés')

    def test_compound_product_needs_a_recipe(self) -> None:
        with self.assertRaises(ValueError):
            create_product(self.db, name='Latte', category_id=self.category.id, base_price='9', compound=True)

        milk = make_ingredient(self.db, name='Leche')
        beans = make_ingredient(self.db, name='Café')
        product = create_product(
            self.db,
            name='Latte',
            category_id=self.category.id,
            base_price='9',
            compound=True,
            recipe=[
                RecipeItemInput(ingredient_id=milk.id, quantity=Decimal('0.25')),
                RecipeItemInput(ingredient_id=beans.id, quantity=Decimal('0.018')),
            ],
        )
        self.db.commit()
        listed = {row['name']: row for row in list_products(self.db)}
        self.assertTrue(listed['Latte']['is_compound'])
        self.assertEqual(listed['Latte']['ingredients_count'], 2)

        update_product(
            self.db,
            product_id=product.id,
            name='Latte',
            category_id=self.category.id,
            base_price='10',
            recipe=[RecipeItemInput(ingredient_id=milk.id, quantity=Decimal('0.30'))],
        )
        self.db.commit()
        listed = {row['name']: row for row in list_products(self.db)}
        self.assertEqual(listed['Latte']['ingredients_count'], 1)
        self.assertTrue(listed['Latte']['is_compound'])

    def test_product_validation(self) -> None:
        with self.assertRaises(ValueError):
            create_product(self.db, name='', category_id=self.category.id, base_price='1')
        with self.assertRaises(ValueError):
            create_product(self.db, name='Té', category_id=None, base_price='1')
        with self.assertRaises(ValueError):
            create_product(self.db, name='Té', category_id=self.category.id, base_price='-1')
        with self.assertRaisesRegex(ValueError, 'Category not found'):
            create_product(self.db, name='Té', category_id=999, base_price='1')

    def test_pos_catalog_filters_active_products(self) -> None:
        other = Category(name='Bebidas', sort_order=5)
        self.db.add(other)
        self.db.flush()
        create_product(self.db, name='Americano', category_id=self.category.id, base_price='6')
        hidden = create_product(self.db, name='Americano helado', category_id=self.category.id, base_price='7')
        create_product(self.db, name='Limonada', category_id=other.id, base_price='5')
        hidden.is_active = False
        self.db.commit()

        names = [row['name'] for row in list_pos_catalog(self.db)['products']]
        self.assertEqual(names, ['Americano', 'Limonada'])
        names = [row['name'] for row in list_pos_catalog(self.db, search='AMER')['products']]
        self.assertEqual(names, ['Americano'])
        names = [row['name'] for row in list_pos_catalog(self.db, category_id=other.id)['products']]
        self.assertEqual(names, ['Limonada'])


class InventoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, factory = make_session_factory()
        self.db = factory()
        self.milk = make_ingredient(self.db, name='Leche', stock='4', min_level='5', cost='4.00')
        self.sugar = make_ingredient(self.db, name='Azúcar', stock='10', min_level='2', cost='1.50')
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _stock(self, ingredient: Ingredient) -> Decimal:
        self.db.expire_all()
        return self.db.get(Ingredient, ingredient.id).current_stock

    def test_purchase_increments_stock_and_logs_supplier(self) -> None:
        register_purchase(self.db, ingredient_id=self.milk.id, quantity='10', cost='4.20', supplier='Gloria')
        register_purchase(self.db, ingredient_id=self.milk.id, quantity='1')
        self.db.commit()

        self.assertEqual(self._stock(self.milk), Decimal('15'))
        self.assertEqual(self.db.get(Ingredient, self.milk.id).cost_per_unit, Decimal('4.20'))
        reasons = self.db.execute(select(StockLog.reason).order_by(StockLog.id.asc())).scalars().all()
        self.assertEqual(reasons, ['Compra: Gloria', 'Compra: General'])

    def test_purchase_rejects_non_positive_quantity(self) -> None:
        for raw in ('0', '-2', None):
            with self.assertRaises(ValueError):
                register_purchase(self.db, ingredient_id=self.milk.id, quantity=raw)
        with self.assertRaisesRegex(ValueError, 'Ingredient not found'):
            register_purchase(self.db, ingredient_id=999, quantity='1')

    def test_manual_adjustment_is_signed(self) -> None:
        adjust_stock(self.db, ingredient_id=self.sugar.id, adjustment='-3')
        self.db.commit()
        self.assertEqual(self._stock(self.sugar), Decimal('7'))
        logs = list_stock_logs(self.db)
        self.assertEqual(logs[0]['reason'], 'Ajuste Manual')
        self.assertEqual(logs[0]['ingredient_name'], 'Azúcar')
        with self.assertRaises(ValueError):
            adjust_stock(self.db, ingredient_id=self.sugar.id, adjustment='0')

    def test_kpis(self) -> None:
        kpis = inventory_kpis(self.db)
        self.assertEqual(kpis['total_items'], 2)
        self.assertEqual(kpis['total_value'], Decimal('31.00'))
        self.assertEqual(kpis['low_stock_count'], 1)

    def test_supplier_requires_name(self) -> None:
        with self.assertRaises(ValueError):
            save_supplier(self.db, name=' ')
        supplier = save_supplier(self.db, name='Gloria', ruc='20100190797', phone='  ')
        self.assertIsNone(supplier.phone)
        self.assertEqual(supplier.ruc, '20100190797')


if __name__ == '__main__':
    unittest.main()
