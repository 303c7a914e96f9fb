from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from cafe_pos.models import OrderItem, PaymentMethod
from cafe_pos.services.report_service import (
    dashboard,
    period_start,
    period_summary,
    quick_filter_range,
    sales_csv,
    sales_export_filename,
    sales_history,
)
from tests.support import make_order, make_profile, make_session_factory

NOW = datetime(2026, 2, 14, 15, 30, tzinfo=timezone.utc)


class ReportHelpersTests(unittest.TestCase):
    def test_csv_layout(self) -> None:
        content = sales_csv(
            [
                {
                    'created_at': datetime(2026, 2, 14, 9, 5, 7),
                    'order_number': '2026-123456',
                    'cashier_name': 'Ana',
                    'payment_method': 'cash',
                    'items_count': 3,
                    'subtotal': Decimal('25'),
                    'tax': Decimal('2.5'),
                    'total': Decimal('27.50'),
                }
            ]
        )
        self.assertEqual(
            content.split('\n'),
            [
                'Fecha/Hora,Orden #,Cajero,Método,Items,Subtotal,Impuestos,Total',
                '2026-02-14 09:05:07,2026-123456,Ana,cash,3,25.00,2.50,27.50',
            ],
        )

    def test_export_filename(self) -> None:
        self.assertEqual(sales_export_filename(date(2026, 2, 3)), 'ventas_2026-02-03.csv')

    def test_quick_filters(self) -> None:
        today = date(2026, 2, 14)
        self.assertEqual(quick_filter_range('today', today=today), (today, today))
        self.assertEqual(quick_filter_range('yesterday', today=today), (date(2026, 2, 13), date(2026, 2, 13)))
        self.assertEqual(quick_filter_range('last7', today=today), (date(2026, 2, 7), today))
        self.assertEqual(quick_filter_range('month', today=today), (date(2026, 2, 1), date(2026, 2, 28)))
        with self.assertRaises(ValueError):
            quick_filter_range('decade', today=today)

    def test_period_start(self) -> None:
        self.assertEqual(period_start('today', now=NOW), datetime(2026, 2, 14, tzinfo=timezone.utc))
        self.assertEqual(period_start('last7days', now=NOW), NOW - timedelta(days=7))
        self.assertEqual(period_start('thismonth', now=NOW), datetime(2026, 2, 1, tzinfo=timezone.utc))
        with self.assertRaises(ValueError):
            period_start('forever', now=NOW)


class ReportQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, factory = make_session_factory()
        self.db = factory()
        self.ana = make_profile(self.db, email='ana@cafe.local')
        self.ana.full_name = 'Ana Torres'
        self.luis = make_profile(self.db, email='luis@cafe.local')
        self.luis.full_name = 'Luis Paz'

        first = make_order(
            self.db,
            cashier_id=self.ana.id,
            total='30.00',
            created_at=NOW - timedelta(hours=2),
            number='2026-000001',
            loyalty_phone='45678912',
        )
        second = make_order(
            self.db,
            cashier_id=self.luis.id,
            total='10.00',
            created_at=NOW - timedelta(hours=1),
            payment_method=PaymentMethod.CARD,
            number='2026-000002',
        )
        make_order(
            self.db,
            cashier_id=self.luis.id,
            total='99.00',
            created_at=NOW - timedelta(days=3),
            number='2026-000003',
        )
        for order, name, quantity, subtotal in (
            (first, 'Latte', 2, '20.00'),
            (first, 'Croissant', 1, '10.00'),
            (second, 'Latte', 1, '10.00'),
        ):
            self.db.add(
                OrderItem(
                    order_id=order.id,
                    product_name=name,
                    quantity=quantity,
                    unit_price=Decimal(subtotal) / quantity,
                    subtotal=Decimal(subtotal),
                    modifiers=[],
                )
            )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_dashboard_counts_today_only(self) -> None:
        data = dashboard(self.db, now=NOW)
        self.assertEqual(data['today_orders'], 2)
        self.assertEqual(data['today_revenue'], Decimal('40.00'))
        self.assertEqual(data['top_products'][0]['name'], 'Latte')
        self.assertEqual(data['top_products'][0]['quantity'], 3)
        self.assertEqual(data['recent_orders'][0]['order_number'], '2026-000002')

    def test_sales_history_filters_and_stats(self) -> None:
        history = sales_history(self.db, date_from=date(2026, 2, 14), date_to=date(2026, 2, 14))
        self.assertEqual(history['total_orders'], 2)
        self.assertEqual(history['total_sales'], Decimal('40.00'))
        self.assertEqual(history['average_ticket'], Decimal('20.00'))
        self.assertEqual(history['by_method']['cash']['percentage'], Decimal('75.0'))
        self.assertEqual(history['orders'][0]['items_count'], 1)

        by_name = sales_history(self.db, search='ana')
        self.assertEqual([row['order_number'] for row in by_name['orders']], ['2026-000001'])
        by_number = sales_history(self.db, search='000003')
        self.assertEqual(by_number['total_orders'], 1)
        cards = sales_history(self.db, payment_method='card')
        self.assertEqual(cards['total_sales'], Decimal('10.00'))
        with self.assertRaises(ValueError):
            sales_history(self.db, payment_method='cheque')

    def test_period_summary_groups_sales(self) -> None:
        summary = period_summary(self.db, period='today', now=NOW)
        self.assertEqual(summary['sales_count'], 2)
        self.assertEqual(summary['total_sales'], Decimal('40.00'))

        customers = {row['customer_name']: row for row in summary['by_customer']}
        self.assertEqual(customers['45678912']['total_products'], 2)
        self.assertEqual(customers['Sin registro']['total_sales'], Decimal('10.00'))

        self.assertEqual(summary['by_employee'][0]['cashier_name'], 'ana@cafe.local')
        self.assertEqual(summary['by_product'][0]['product_name'], 'Latte')
        self.assertEqual(summary['by_product'][0]['total_sales'], Decimal('30.00'))
        self.assertEqual(len(summary['by_payment_method']), 2)

        self.assertEqual(period_summary(self.db, period='last7days', now=NOW)['sales_count'], 3)


if __name__ == '__main__':
    unittest.main()
