from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from cafe_pos.auth import Principal, admin_access
from cafe_pos.config import settings
from cafe_pos.db import get_db
from cafe_pos.dependencies import get_client_ip, get_templates, service_error
from cafe_pos.services.audit_service import log_audit
from cafe_pos.services.report_service import (
    dashboard,
    get_order_detail,
    period_summary,
    quick_filter_range,
    sales_csv,
    sales_export_filename,
    sales_history,
)
from cafe_pos.services.shift_service import get_shift_detail, list_shifts

router = APIRouter(prefix='/reports', tags=['reports'])


def _today() -> date:
    return datetime.now(tz=timezone.utc).date()


def _parse_date_range(date_from: str | None, date_to: str | None, quick: str | None) -> tuple[date | None, date | None]:
    try:
        if quick:
            return quick_filter_range(quick, today=_today())
        from_date = date.fromisoformat(date_from) if date_from else None
        to_date = date.fromisoformat(date_to) if date_to else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=400, detail='Invalid date filter')
    return from_date, to_date


def _history(db: Session, date_from, date_to, quick, payment_method, search) -> dict:
    from_date, to_date = _parse_date_range(date_from, date_to, quick)
    try:
        return sales_history(
            db,
            date_from=from_date,
            date_to=to_date,
            payment_method=payment_method,
            search=search,
        )
    except ValueError as exc:
        raise service_error(exc) from exc


@router.get('/dashboard')
def dashboard_view(principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return dashboard(db)


@router.get('/orders/{order_id}')
def order_detail(order_id: int, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    try:
        return get_order_detail(db, order_id=order_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/sales')
def sales(
    date_from: str | None = None,
    date_to: str | None = None,
    quick: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return _history(db, date_from, date_to, quick, payment_method, search)


@router.get('/sales/export.csv')
def export_sales_csv(
    request: Request,
    date_from: str | None = None,
    date_to: str | None = None,
    quick: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    history = _history(db, date_from, date_to, quick, payment_method, search)
    content = sales_csv(history['orders'])

    log_audit(
        db,
        actor_profile_id=principal.id,
        action='SALES_EXPORTED_CSV',
        entity_id=None,
        ip=get_client_ip(request),
        metadata={'rows': history['total_orders']},
    )
    db.commit()

    return StreamingResponse(
        iter([content]),
        media_type='text/csv; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename={sales_export_filename(_today())}'},
    )


@router.get('/summary')
def summary(period: str = 'today', principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    try:
        return period_summary(db, period=period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get('/shifts')
def shifts(principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_shifts(db)


@router.get('/shifts/{shift_id}')
def shift_detail(shift_id: int, principal: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    try:
        return get_shift_detail(db, shift_id=shift_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/shifts/{shift_id}/report')
def shift_report(
    shift_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    templates: Jinja2Templates = Depends(get_templates),
):
    try:
        detail = get_shift_detail(db, shift_id=shift_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return templates.TemplateResponse(
        request,
        'shift_report.html',
        {
            'shift': detail,
            'currency': settings.currency_symbol,
            'printed_by': principal.display_name,
        },
    )
