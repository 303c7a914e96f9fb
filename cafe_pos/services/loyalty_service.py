from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from cafe_pos.models import DocumentType, LoyaltyCard, LoyaltyConditionType, LoyaltyRewardType, LoyaltyRule
from cafe_pos.services.cart_service import to_decimal


def _clean(value: str | None) -> str | None:
    clean = (value or '').strip()
    return clean or None


def compose_customer_name(first_name: str | None, last_name_paternal: str | None, last_name_maternal: str | None) -> str:
    parts = [(part or '').strip() for part in (first_name, last_name_paternal, last_name_maternal)]
    return ' '.join(part for part in parts if part)


def find_card(db: Session, *, loyalty_phone: str) -> LoyaltyCard | None:
    clean = (loyalty_phone or '').strip()
    if not clean:
        return None
    return db.execute(select(LoyaltyCard).where(LoyaltyCard.phone == clean)).scalar_one_or_none()


def rule_reached(
    rule: LoyaltyRule,
    *,
    order_total: Decimal,
    spent_before: Decimal,
    spent_after: Decimal,
    visits_before: int,
    visits_after: int,
) -> bool:
    threshold = rule.condition_value
    if rule.condition_type == LoyaltyConditionType.TICKET_SPENDING:
        return order_total >= threshold
    if rule.condition_type == LoyaltyConditionType.TOTAL_SPENDING:
        return spent_before < threshold <= spent_after
    if rule.condition_type == LoyaltyConditionType.VISIT_COUNT:
        return visits_before < threshold <= visits_after
    return False


def apply_order_to_card(db: Session, *, loyalty_phone: str, order_total: Decimal) -> LoyaltyCard | None:
    card = find_card(db, loyalty_phone=loyalty_phone)
    if not card:
        return None

    spent_before = card.total_spent or Decimal('0.00')
    visits_before = card.visit_count or 0
    card.total_spent = spent_before + order_total
    card.visit_count = visits_before + 1

    active_rules = db.execute(select(LoyaltyRule).where(LoyaltyRule.is_active.is_(True))).scalars().all()
    earned = sum(
        1
        for rule in active_rules
        if rule_reached(
            rule,
            order_total=order_total,
            spent_before=spent_before,
            spent_after=card.total_spent,
            visits_before=visits_before,
            visits_after=card.visit_count,
        )
    )
    card.points = (card.points or 0) + earned
    db.flush()
    return card


def _card_row(card: LoyaltyCard) -> dict:
    return {
        'id': card.id,
        'name': card.name,
        'email': card.email,
        'phone': card.phone,
        'phone_number': card.phone_number,
        'document_type': card.document_type.value,
        'points': card.points,
        'total_spent': card.total_spent,
        'visit_count': card.visit_count,
        'created_at': card.created_at,
    }


def list_cards(db: Session, *, search: str | None = None) -> list[dict]:
    cards = db.execute(select(LoyaltyCard).order_by(LoyaltyCard.created_at.desc(), LoyaltyCard.id.desc())).scalars().all()
    needle = (search or '').strip().lower()
    return [
        _card_row(card)
        for card in cards
        if not needle
        or needle in (card.name or '').lower()
        or needle in card.phone
        or needle in (card.phone_number or '')
    ]


def save_card(
    db: Session,
    *,
    card_id: int | None = None,
    document_number: str,
    document_type: str = DocumentType.DNI.value,
    first_name: str | None = None,
    last_name_paternal: str | None = None,
    last_name_maternal: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> LoyaltyCard:
    clean_document = (document_number or '').strip()
    if not clean_document:
        raise ValueError('Document number is required')
    try:
        doc_type = DocumentType((document_type or DocumentType.DNI.value).strip().upper())
    except ValueError as exc:
        raise ValueError(f'Unsupported document type: {document_type}') from exc

    conflict_query = select(LoyaltyCard.id).where(LoyaltyCard.phone == clean_document)
    if card_id is not None:
        conflict_query = conflict_query.where(LoyaltyCard.id != card_id)
    if db.execute(conflict_query).scalar_one_or_none() is not None:
        raise ValueError('Document number is already registered')

    if card_id is None:
        card = LoyaltyCard(points=0, total_spent=Decimal('0.00'), visit_count=0)
        db.add(card)
    else:
        card = db.execute(select(LoyaltyCard).where(LoyaltyCard.id == card_id)).scalar_one_or_none()
        if not card:
            raise ValueError('Customer not found')

    card.name = compose_customer_name(first_name, last_name_paternal, last_name_maternal)
    card.phone = clean_document
    card.phone_number = _clean(phone)
    card.document_type = doc_type
    card.email = _clean(email)
    db.flush()
    return card


def delete_card(db: Session, *, card_id: int) -> None:
    card = db.execute(select(LoyaltyCard).where(LoyaltyCard.id == card_id)).scalar_one_or_none()
    if not card:
        raise ValueError('Customer not found')
    db.delete(card)
    db.flush()


def _rule_row(rule: LoyaltyRule) -> dict:
    return {
        'id': rule.id,
        'name': rule.name,
        'condition_type': rule.condition_type.value,
        'condition_value': rule.condition_value,
        'reward_type': rule.reward_type.value,
        'reward_value': rule.reward_value,
        'is_active': rule.is_active,
    }


def list_rules(db: Session) -> list[dict]:
    rules = db.execute(select(LoyaltyRule).order_by(LoyaltyRule.created_at.desc(), LoyaltyRule.id.desc())).scalars().all()
    return [_rule_row(rule) for rule in rules]


def save_rule(
    db: Session,
    *,
    rule_id: int | None = None,
    name: str,
    condition_type: str,
    condition_value,
    reward_type: str,
    reward_value: str,
    is_active: bool = True,
) -> LoyaltyRule:
    clean_name = (name or '').strip()
    clean_reward = (reward_value or '').strip()
    if not clean_name or condition_value in (None, '') or not clean_reward:
        raise ValueError('Name, condition value and reward are required')
    value = to_decimal(condition_value, label='condition value')
    if value <= 0:
        raise ValueError('Condition value must be greater than zero')
    try:
        condition = LoyaltyConditionType(condition_type)
        reward = LoyaltyRewardType(reward_type)
    except ValueError as exc:
        raise ValueError('Unsupported rule condition or reward type') from exc

    if rule_id is None:
        rule = LoyaltyRule()
        db.add(rule)
    else:
        rule = db.execute(select(LoyaltyRule).where(LoyaltyRule.id == rule_id)).scalar_one_or_none()
        if not rule:
            raise ValueError('Rule not found')

    rule.name = clean_name
    rule.condition_type = condition
    rule.condition_value = value
    rule.reward_type = reward
    rule.reward_value = clean_reward
    rule.is_active = is_active
    db.flush()
    return rule


def toggle_rule(db: Session, *, rule_id: int) -> LoyaltyRule:
    rule = db.execute(select(LoyaltyRule).where(LoyaltyRule.id == rule_id)).scalar_one_or_none()
    if not rule:
        raise ValueError('Rule not found')
    rule.is_active = not rule.is_active
    db.flush()
    return rule


def delete_rule(db: Session, *, rule_id: int) -> None:
    rule = db.execute(select(LoyaltyRule).where(LoyaltyRule.id == rule_id)).scalar_one_or_none()
    if not rule:
        raise ValueError('Rule not found')
    db.delete(rule)
    db.flush()


def loyalty_dashboard(db: Session, *, search: str | None = None) -> dict:
    customers = list_cards(db, search=search)
    active_rules = len(db.execute(select(LoyaltyRule.id).where(LoyaltyRule.is_active.is_(True))).all())
    all_cards = db.execute(select(LoyaltyCard.points)).scalars().all()
    return {
        'customers': customers,
        'total_customers': len(all_cards),
        'active_rules': active_rules,
        'pending_rewards': sum(1 for points in all_cards if (points or 0) > 0),
        'total_points': sum(points or 0 for points in all_cards),
    }
