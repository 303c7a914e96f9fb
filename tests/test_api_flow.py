from __future__ import annotations

import tempfile
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from cafe_pos.db import get_db
from cafe_pos.dependencies import get_local_store
from cafe_pos.main import app
from cafe_pos.models import Order, OrderItem, ProfileRole
from cafe_pos.security.passwords import hash_password
from cafe_pos.services.local_state_service import LocalStateStore
from tests.support import make_product, make_profile, make_session_factory


class PosApiFlowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.factory = make_session_factory()
        self.tmp = tempfile.TemporaryDirectory()
        self.store = LocalStateStore(self.tmp.name)

        with self.factory() as db:
            make_profile(db, email='admin@cafe.local', role=ProfileRole.ADMIN, password_hash=hash_password('adminpass'))
            make_profile(db, email='caja@cafe.local', password_hash=hash_password('cajapass'))
            self.latte_id = make_product(db, name='Latte', price='10.00').id
            self.croissant_id = make_product(db, name='Croissant', price='5.00').id
            db.commit()

        def override_db():
            with self.factory() as db:
                yield db

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_local_store] = lambda: self.store
        self.session_patch = patch('cafe_pos.security.sessions.SessionLocal', self.factory)
        self.session_patch.start()
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.client.close()
        self.session_patch.stop()
        app.dependency_overrides.clear()
        self.tmp.cleanup()
        self.engine.dispose()

    def _login(self, email: str, password: str):
        token = self.client.get('/login').json()['csrf_token']
        self.client.headers['X-CSRF-Token'] = token
        return self.client.post('/login', json={'email': email, 'password': password})

    def test_requests_without_session_are_rejected(self) -> None:
        self.assertEqual(self.client.get('/pos/cart').status_code, 401)
        self.assertEqual(self.client.get('/robots.txt').status_code, 200)

    def test_bad_credentials_and_missing_csrf(self) -> None:
        self.assertEqual(self._login('caja@cafe.local', 'nope').status_code, 401)
        self.client.headers['X-CSRF-Token'] = 'forged'
        response = self.client.post('/login', json={'email': 'caja@cafe.local', 'password': 'cajapass'})
        self.assertEqual(response.status_code, 403)

    def _count(self, model) -> int:
        with self.factory() as db:
            return db.execute(select(func.count()).select_from(model)).scalar_one()

    def test_checkout_needs_an_open_shift(self) -> None:
        self._login('caja@cafe.local', 'cajapass')
        self.client.post('/pos/cart/items', json={'product_id': self.croissant_id})

        refused = self.client.post('/pos/checkout', json={'payment_method': 'card'})
        self.assertEqual(refused.status_code, 409)
        self.assertEqual(len(self.client.get('/pos/cart').json()['items']), 1)
        self.assertEqual(self._count(Order), 0)

    def test_cashier_sells_and_closes_shift(self) -> None:
        login = self._login('caja@cafe.local', 'cajapass')
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()['role'], 'cashier')

        opened = self.client.post('/pos/shift/open', json={'initial_cash': '200.00'})
        self.assertEqual(opened.status_code, 200)
        self.assertEqual(opened.json()['status'], 'open')

        self.client.post('/pos/cart/items', json={'product_id': self.latte_id, 'quantity': 2})
        cart = self.client.post('/pos/cart/items', json={'product_id': self.croissant_id}).json()
        self.assertEqual([line['subtotal'] for line in cart['items']], ['20.00', '5.00'])
        self.assertEqual((cart['subtotal'], cart['tax'], cart['total']), ('25.00', '2.50', '27.50'))

        short = self.client.post('/pos/checkout', json={'payment_method': 'cash', 'amount_tendered': '20'})
        self.assertEqual(short.status_code, 400)
        invalid = self.client.post('/pos/checkout', json={'payment_method': 'cash', 'amount_tendered': 'NaN'})
        self.assertEqual(invalid.status_code, 400)

        sale = self.client.post('/pos/checkout', json={'payment_method': 'cash', 'amount_tendered': '30.00'})
        self.assertEqual(sale.status_code, 200)
        body = sale.json()
        self.assertEqual(body['status'], 'completed')
        self.assertEqual(body['order']['total'], '27.50')
        self.assertEqual(body['order']['amount_paid'], '30.00')
        self.assertEqual(body['order']['change_amount'], '2.50')
        self.assertEqual(self.client.get('/pos/cart').json()['items'], [])
        self.assertEqual(self._count(Order), 1)
        self.assertEqual(self._count(OrderItem), 2)

        closed = self.client.post('/pos/shift/close', json={'final_cash': '227.50'})
        self.assertEqual(closed.status_code, 200)
        reconciliation = closed.json()['reconciliation']
        self.assertEqual(reconciliation['expected_cash'], 227.5)
        self.assertEqual(reconciliation['difference'], 0)
        self.assertEqual(reconciliation['status'], 'BALANCED')
        self.assertFalse(reconciliation['has_discrepancy'])
        self.assertEqual(closed.json()['totals']['total_orders'], 1)

    def test_offline_checkout_is_queued_then_drained(self) -> None:
        self._login('caja@cafe.local', 'cajapass')
        self.client.post('/pos/shift/open', json={'initial_cash': '0'})
        self.client.post('/pos/sync/connectivity', json={'is_online': False})
        self.client.post('/pos/cart/items', json={'product_id': self.latte_id, 'quantity': 2})

        queued = self.client.post('/pos/checkout', json={'payment_method': 'card'})
        self.assertEqual(queued.status_code, 202)
        self.assertEqual(queued.json()['pending_count'], 1)
        self.assertEqual(self.client.get('/pos/sync').json()['pending_count'], 1)

        drained = self.client.post('/pos/sync/connectivity', json={'is_online': True}).json()
        self.assertEqual(len(drained['delivered']), 1)
        self.assertEqual(drained['remaining'], 0)
        self.assertTrue(drained['is_online'])

    def test_reports_are_admin_only(self) -> None:
        self._login('caja@cafe.local', 'cajapass')
        self.assertEqual(self.client.get('/reports/dashboard').status_code, 403)

        self.client.post('/logout')
        self._login('admin@cafe.local', 'adminpass')
        self.assertEqual(self.client.get('/reports/dashboard').status_code, 200)
        export = self.client.get('/reports/sales/export.csv')
        self.assertEqual(export.status_code, 200)
        self.assertTrue(export.text.startswith('Fecha/Hora,Orden #'))


if __name__ == '__main__':
    unittest.main()
