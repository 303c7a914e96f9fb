from __future__ import annotations

import csv
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from cafe_pos.config import settings
from cafe_pos.models import Order, OrderItem, PaymentMethod, Profile
from cafe_pos.services.cart_service import money
from cafe_pos.services.inventory_service import low_stock_count

ZERO = Decimal('0.00')
UNREGISTERED_CUSTOMER = 'Sin registro'
UNKNOWN_CASHIER = 'Desconocido'
UNKNOWN_PRODUCT = 'Producto desconocido'
SUMMARY_PERIODS = ('today', 'yesterday', 'last7days', 'last30days', 'thismonth')
QUICK_FILTERS = ('today', 'yesterday', 'last7', 'month')
CSV_HEADER = ['Fecha/Hora', 'Orden #', 'Cajero', 'Método', 'Items', 'Subtotal', 'Impuestos', 'Total']


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _cashier_name(full_name: str | None, email: str | None, *, fallback: str = UNKNOWN_CASHIER) -> str:
    return full_name or email or fallback


def quick_filter_range(quick_filter: str, *, today: date) -> tuple[date, date]:
    if quick_filter == 'today':
        return today, today
    if quick_filter == 'yesterday':
        yesterday = today - timedelta(days=1)
        return yesterday, yesterday
    if quick_filter == 'last7':
        return today - timedelta(days=7), today
    if quick_filter == 'month':
        return today.replace(day=1), today.replace(day=monthrange(today.year, today.month)[1])
    raise ValueError(f'Unknown quick filter: {quick_filter}')


def period_start(period: str, *, now: datetime) -> datetime:
    today = now.date()
    if period == 'today':
        return _start_of_day(today)
    if period == 'yesterday':
        return _start_of_day(today - timedelta(days=1))
    if period == 'last7days':
        return now - timedelta(days=7)
    if period == 'last30days':
        return now - timedelta(days=30)
    if period == 'thismonth':
        return _start_of_day(today.replace(day=1))
    raise ValueError(f'Unknown period: {period}')


def _items_by_order(db: Session, order_ids: list[int]) -> dict[int, list[OrderItem]]:
    grouped: dict[int, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    items = db.execute(
        select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.id.asc())
    ).scalars().all()
    for item in items:
        grouped[item.order_id].append(item)
    return grouped


def dashboard(db: Session, *, now: datetime | None = None) -> dict:
    moment = now or _now()
    rows = db.execute(
        select(Order, Profile.full_name, Profile.email)
        .outerjoin(Profile, Profile.id == Order.cashier_id)
        .where(Order.created_at >= _start_of_day(moment.date()))
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).all()
    items = _items_by_order(db, [order.id for order, _, _ in rows])

    products: dict[str, dict] = {}
    for order_items in items.values():
        for item in order_items:
            entry = products.setdefault(item.product_name, {'name': item.product_name, 'quantity': 0, 'revenue': ZERO})
            entry['quantity'] += item.quantity
            entry['revenue'] += item.subtotal
    top_products = sorted(products.values(), key=lambda row: row['revenue'], reverse=True)[:5]

    low_stock = low_stock_count(db)
    return {
        'today_revenue': money(sum((order.total for order, _, _ in rows), ZERO)),
        'today_orders': len(rows),
        'low_stock_count': low_stock,
        'low_stock_alert': settings.low_stock_alert_enabled and low_stock > 0,
        'top_products': top_products,
        'recent_orders': [
            {
                'id': order.id,
                'order_number': order.order_number,
                'total': order.total,
                'payment_method': order.payment_method.value,
                'created_at': order.created_at,
                'cashier_name': _cashier_name(full_name, email),
            }
            for order, full_name, email in rows[:10]
        ],
    }


def get_order_detail(db: Session, *, order_id: int) -> dict:
    row = db.execute(
        select(Order, Profile.full_name, Profile.email)
        .outerjoin(Profile, Profile.id == Order.cashier_id)
        .where(Order.id == order_id)
    ).one_or_none()
    if not row:
        raise ValueError('Order not found')
    order, full_name, email = row
    items = _items_by_order(db, [order.id])[order.id]
    return {
        'id': order.id,
        'order_number': order.order_number,
        'created_at': order.created_at,
        'cashier_name': _cashier_name(full_name, email),
        'payment_method': order.payment_method.value,
        'subtotal': order.subtotal,
        'tax': order.tax,
        'total': order.total,
        'amount_paid': order.amount_paid,
        'change_amount': order.change_amount,
        'loyalty_phone': order.loyalty_phone,
        'synced': order.synced,
        'items': [
            {
                'product_id': item.product_id,
                'product_name': item.product_name,
                'variant_name': item.variant_name,
                'modifiers': item.modifiers or [],
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'subtotal': item.subtotal,
            }
            for item in items
        ],
    }


def _method_stats(orders: list[dict], total_sales: Decimal) -> dict:
    stats = {}
    for method in PaymentMethod:
        method_orders = [order for order in orders if order['payment_method'] == method.value]
        total = money(sum((order['total'] for order in method_orders), ZERO))
        percentage = (total / total_sales * 100).quantize(Decimal('0.1')) if total_sales > 0 else Decimal('0.0')
        stats[method.value] = {'total': total, 'count': len(method_orders), 'percentage': percentage}
    return stats


def sales_history(
    db: Session,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    payment_method: str | None = None,
    search: str | None = None,
) -> dict:
    query = (
        select(Order, Profile.full_name, Profile.email)
        .outerjoin(Profile, Profile.id == Order.cashier_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    if date_from:
        query = query.where(Order.created_at >= _start_of_day(date_from))
    if date_to:
        query = query.where(Order.created_at <= _end_of_day(date_to))
    rows = db.execute(query).all()

    method = (payment_method or 'all').strip().lower()
    if method != 'all' and method not in {m.value for m in PaymentMethod}:
        raise ValueError(f'Unsupported payment method: {payment_method}')
    needle = (search or '').strip().lower()

    filtered = [
        (order, full_name, email)
        for order, full_name, email in rows
        if (method == 'all' or order.payment_method.value == method)
        and (not needle or needle in (full_name or '').lower() or needle in order.order_number.lower())
    ]
    items = _items_by_order(db, [order.id for order, _, _ in filtered])

    orders = [
        {
            'id': order.id,
            'order_number': order.order_number,
            'created_at': order.created_at,
            'cashier_name': full_name or email or 'N/A',
            'payment_method': order.payment_method.value,
            'items_count': len(items[order.id]),
            'subtotal': order.subtotal,
            'tax': order.tax,
            'total': order.total,
        }
        for order, full_name, email in filtered
    ]
    total_sales = money(sum((order['total'] for order in orders), ZERO))
    return {
        'orders': orders,
        'total_orders': len(orders),
        'total_sales': total_sales,
        'average_ticket': money(total_sales / len(orders)) if orders else ZERO,
        'by_method': _method_stats(orders, total_sales),
    }


def _format_amount(value: Decimal | None) -> str:
    return f'{(value or ZERO):.2f}'


def sales_csv(orders: list[dict]) -> str:
    sio = StringIO()
    writer = csv.writer(sio, lineterminator='\n')
    writer.writerow(CSV_HEADER)
    for order in orders:
        writer.writerow(
            [
                order['created_at'].strftime('%Y-%m-%d %H:%M:%S'),
                order['order_number'],
                order['cashier_name'],
                order['payment_method'],
                order['items_count'],
                _format_amount(order['subtotal']),
                _format_amount(order['tax']),
                _format_amount(order['total']),
            ]
        )
    return sio.getvalue().rstrip('\n')


def sales_export_filename(today: date) -> str:
    return f'ventas_{today.isoformat()}.csv'


def period_summary(db: Session, *, period: str, now: datetime | None = None) -> dict:
    moment = now or _now()
    start = period_start(period, now=moment)
    rows = db.execute(
        select(Order, Profile.email)
        .outerjoin(Profile, Profile.id == Order.cashier_id)
        .where(Order.created_at >= start)
        .order_by(Order.created_at.asc(), Order.id.asc())
    ).all()
    items = _items_by_order(db, [order.id for order, _ in rows])

    customers: dict[str, dict] = {}
    employees: dict[str, dict] = {}
    products: dict[str, dict] = {}
    methods: dict[str, dict] = {}
    for order, email in rows:
        order_items = items[order.id]

        customer_key = order.loyalty_phone or UNREGISTERED_CUSTOMER
        customer = customers.setdefault(
            customer_key,
            {'customer_name': customer_key, 'total_sales': ZERO, 'total_orders': 0, 'total_products': 0},
        )
        customer['total_sales'] += order.total
        customer['total_orders'] += 1
        customer['total_products'] += len(order_items)

        employee_key = str(order.cashier_id) if order.cashier_id is not None else 'unknown'
        employee = employees.setdefault(
            employee_key,
            {
                'cashier_id': order.cashier_id,
                'cashier_name': email or UNKNOWN_CASHIER,
                'total_sales': ZERO,
                'total_orders': 0,
            },
        )
        employee['total_sales'] += order.total
        employee['total_orders'] += 1

        for item in order_items:
            name = item.product_name or UNKNOWN_PRODUCT
            product = products.setdefault(name, {'product_name': name, 'quantity': 0, 'total_sales': ZERO})
            product['quantity'] += item.quantity
            product['total_sales'] += item.subtotal

        method = methods.setdefault(
            order.payment_method.value,
            {'payment_method': order.payment_method.value, 'total_sales': ZERO, 'transaction_count': 0},
        )
        method['total_sales'] += order.total
        method['transaction_count'] += 1

    def _by_sales(values):
        return sorted(values, key=lambda row: row['total_sales'], reverse=True)

    return {
        'period': period,
        'start': start,
        'total_sales': money(sum((order.total for order, _ in rows), ZERO)),
        'sales_count': len(rows),
        'by_customer': _by_sales(customers.values())[:5],
        'by_employee': _by_sales(employees.values())[:5],
        'by_product': _by_sales(products.values()),
        'by_payment_method': list(methods.values()),
    }
