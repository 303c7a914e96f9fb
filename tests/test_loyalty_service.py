from __future__ import annotations

import unittest
from decimal import Decimal
from types import SimpleNamespace

from cafe_pos.models import DocumentType, LoyaltyConditionType
from cafe_pos.services.loyalty_service import (
    apply_order_to_card,
    loyalty_dashboard,
    rule_reached,
    save_card,
    save_rule,
    toggle_rule,
)
from tests.support import make_session_factory


def _rule(condition_type: LoyaltyConditionType, value: str) -> SimpleNamespace:
    return SimpleNamespace(condition_type=condition_type, condition_value=Decimal(value))


class RuleReachedTests(unittest.TestCase):
    def _reached(self, rule, *, total='10', spent_before='0', visits_before=0) -> bool:
        order_total = Decimal(total)
        before = Decimal(spent_before)
        return rule_reached(
            rule,
            order_total=order_total,
            spent_before=before,
            spent_after=before + order_total,
            visits_before=visits_before,
            visits_after=visits_before + 1,
        )

    def test_ticket_rule_compares_the_order_total(self) -> None:
        rule = _rule(LoyaltyConditionType.TICKET_SPENDING, '50')
        self.assertTrue(self._reached(rule, total='50'))
        self.assertFalse(self._reached(rule, total='49.99'))

    def test_total_spending_rule_fires_once_when_crossed(self) -> None:
        rule = _rule(LoyaltyConditionType.TOTAL_SPENDING, '100')
        self.assertTrue(self._reached(rule, total='20', spent_before='90'))
        self.assertFalse(self._reached(rule, total='20', spent_before='120'))
        self.assertFalse(self._reached(rule, total='20', spent_before='10'))

    def test_visit_rule_fires_on_the_target_visit(self) -> None:
        rule = _rule(LoyaltyConditionType.VISIT_COUNT, '10')
        self.assertTrue(self._reached(rule, visits_before=9))
        self.assertFalse(self._reached(rule, visits_before=10))
        self.assertFalse(self._reached(rule, visits_before=3))


class LoyaltyCardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, factory = make_session_factory()
        self.db = factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_card_name_and_unique_document(self) -> None:
        card = save_card(
            self.db,
            document_number=' 45678912 ',
            document_type='dni',
            first_name='Rosa',
            last_name_paternal='Quispe',
            last_name_maternal='',
            phone='987654321',
        )
        self.assertEqual(card.name, 'Rosa Quispe')
        self.assertEqual(card.phone, '45678912')
        self.assertEqual(card.document_type, DocumentType.DNI)

        with self.assertRaisesRegex(ValueError, 'already registered'):
            save_card(self.db, document_number='45678912', first_name='Otra')
        with self.assertRaises(ValueError):
            save_card(self.db, document_number='  ')
        with self.assertRaises(ValueError):
            save_card(self.db, document_number='123', document_type='LICENCIA')

        updated = save_card(self.db, card_id=card.id, document_number='45678912', first_name='Rosa María')
        self.assertEqual(updated.name, 'Rosa María')

    def test_unknown_identifier_is_ignored(self) -> None:
        self.assertIsNone(apply_order_to_card(self.db, loyalty_phone='000', order_total=Decimal('10')))

    def test_rules_and_dashboard(self) -> None:
        with self.assertRaises(ValueError):
            save_rule(
                self.db,
                name='Cero',
                condition_type='visit_count',
                condition_value='0',
                reward_type='custom',
                reward_value='x',
            )
        rule = save_rule(
            self.db,
            name='Quinta visita',
            condition_type='visit_count',
            condition_value='5',
            reward_type='free_product',
            reward_value='Espresso',
        )
        card = save_card(self.db, document_number='11112222', first_name='Luis')
        card.visit_count = 4
        self.db.flush()

        apply_order_to_card(self.db, loyalty_phone='11112222', order_total=Decimal('12.50'))
        self.assertEqual(card.points, 1)
        self.assertEqual(card.visit_count, 5)
        self.assertEqual(card.total_spent, Decimal('12.50'))

        dashboard = loyalty_dashboard(self.db)
        self.assertEqual(dashboard['total_customers'], 1)
        self.assertEqual(dashboard['active_rules'], 1)
        self.assertEqual(dashboard['pending_rewards'], 1)

        toggle_rule(self.db, rule_id=rule.id)
        self.assertEqual(loyalty_dashboard(self.db)['active_rules'], 0)


if __name__ == '__main__':
    unittest.main()
