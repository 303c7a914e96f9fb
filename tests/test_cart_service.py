from __future__ import annotations

import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

from cafe_pos.services.cart_service import (
    CART_STATE_KEY,
    Cart,
    CartIndexError,
    CartLine,
    CartModifier,
    cart_view,
    load_cart,
    save_cart,
)
from cafe_pos.services.local_state_service import LocalStateDecodeError, LocalStateStore


def _line(product_id: int = 1, price: str = '10.00', quantity: int = 1, **kwargs) -> CartLine:
    return CartLine(
        product_id=product_id,
        product_name=f'Product {product_id}',
        quantity=quantity,
        base_price=Decimal(price),
        **kwargs,
    )


class CartTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cart = Cart(tax_rate=Decimal('0.10'))

    def test_totals_follow_lines_and_modifiers(self) -> None:
        self.cart.add_item(_line(1, '10.00', 2))
        self.cart.add_item(
            _line(
                2,
                '5.00',
                1,
                variant_price=Decimal('1.00'),
                modifiers=[CartModifier(id='oat', name='Leche de avena', price=Decimal('1.50'))],
            )
        )

        self.assertEqual(self.cart.lines[0].subtotal, Decimal('20.00'))
        self.assertEqual(self.cart.lines[1].subtotal, Decimal('7.50'))
        self.assertEqual(self.cart.subtotal, Decimal('27.50'))
        self.assertEqual(self.cart.tax, Decimal('2.75'))
        self.assertEqual(self.cart.total, Decimal('30.25'))
        self.assertEqual(self.cart.total, self.cart.subtotal + self.cart.tax)

    def test_tax_rounds_half_up_to_cents(self) -> None:
        self.cart.add_item(_line(1, '0.05', 1))
        self.assertEqual(self.cart.tax, Decimal('0.01'))
        self.assertEqual(self.cart.total, Decimal('0.06'))

    def test_same_product_is_never_merged(self) -> None:
        self.cart.add_item(_line(1))
        self.cart.add_item(_line(1))
        self.assertEqual(len(self.cart.lines), 2)

    def test_update_quantity_recomputes_subtotal(self) -> None:
        self.cart.add_item(_line(1, '4.00', 1))
        self.cart.update_quantity(0, 3)
        self.assertEqual(self.cart.lines[0].subtotal, Decimal('12.00'))
        self.assertEqual(self.cart.subtotal, Decimal('12.00'))

    def test_update_quantity_to_zero_removes_line(self) -> None:
        self.cart.add_item(_line(1))
        self.cart.add_item(_line(2))
        self.cart.update_quantity(0, 0)
        self.assertEqual([line.product_id for line in self.cart.lines], [2])

    def test_out_of_range_index_raises(self) -> None:
        self.cart.add_item(_line(1))
        with self.assertRaises(CartIndexError):
            self.cart.update_quantity(5, 1)
        with self.assertRaises(CartIndexError):
            self.cart.remove_item(1)
        with self.assertRaises(CartIndexError):
            self.cart.remove_item(-1)

    def test_add_item_rejects_bad_quantity_and_price(self) -> None:
        with self.assertRaises(ValueError):
            self.cart.add_item(_line(1, quantity=0))
        with self.assertRaises(ValueError):
            self.cart.add_item(_line(1, price='-1.00'))
        with self.assertRaises(ValueError):
            self.cart.add_item(_line(1, variant_price=Decimal('-3.00')))
        with self.assertRaisesRegex(ValueError, 'Modifier price'):
            self.cart.add_item(_line(1, modifiers=[CartModifier(id='promo', name='Descuento', price=Decimal('-2.00'))]))
        with self.assertRaises(ValueError):
            self.cart.add_item(_line(1, variant_price=Decimal('NaN')))
        self.assertTrue(self.cart.is_empty)

    def test_clear_drops_lines_and_loyalty(self) -> None:
        self.cart.add_item(_line(1))
        self.cart.set_loyalty_phone(' 45678912 ')
        self.assertEqual(self.cart.loyalty_phone, '45678912')

        self.cart.clear()
        self.assertTrue(self.cart.is_empty)
        self.assertIsNone(self.cart.loyalty_phone)
        self.assertEqual(self.cart.total, Decimal('0'))

    def test_cart_view_reports_string_amounts(self) -> None:
        self.cart.add_item(_line(1, '25.00'))
        view = cart_view(self.cart)
        self.assertEqual(view['subtotal'], '25.00')
        self.assertEqual(view['tax'], '2.50')
        self.assertEqual(view['total'], '27.50')


class CartPersistenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = LocalStateStore(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_state_loads_empty_cart(self) -> None:
        self.assertTrue(load_cart(self.store, 7).is_empty)

    def test_saved_cart_is_restored(self) -> None:
        cart = Cart()
        cart.add_item(
            _line(3, '8.00', 2, variant_id='L', variant_name='Grande', variant_price=Decimal('2.00'))
        )
        cart.set_loyalty_phone('70001234')
        save_cart(self.store, 7, cart)

        restored = load_cart(self.store, 7)
        self.assertEqual(len(restored.lines), 1)
        self.assertEqual(restored.lines[0].variant_name, 'Grande')
        self.assertEqual(restored.lines[0].subtotal, Decimal('20.00'))
        self.assertEqual(restored.loyalty_phone, '70001234')
        self.assertEqual(restored.total, cart.total)
        self.assertEqual(self.store.profile_ids(), [7])

    def test_corrupt_state_raises_decode_error(self) -> None:
        path = Path(self._tmp.name) / '7' / f'{CART_STATE_KEY}.json'
        path.parent.mkdir(parents=True)
        path.write_text('{not json', encoding='utf-8')
        with self.assertRaises(LocalStateDecodeError):
            load_cart(self.store, 7)

    def test_incomplete_line_raises_decode_error(self) -> None:
        self.store.save(7, CART_STATE_KEY, {'items': [{'product_id': 1}]})
        with self.assertRaises(LocalStateDecodeError):
            load_cart(self.store, 7)


if __name__ == '__main__':
    unittest.main()
