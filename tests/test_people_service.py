from __future__ import annotations

import unittest

from cafe_pos.models import ProfileRole, ProfileStatus
from cafe_pos.services.people_service import (
    authenticate,
    create_profile,
    list_profiles,
    toggle_profile_status,
    update_profile,
)
from tests.support import make_session_factory


class PeopleServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, factory = make_session_factory()
        self.db = factory()
        self.admin = create_profile(
            self.db,
            email=' Admin@Cafe.Local ',
            full_name='Admin',
            role='admin',
            password='adminpass',
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_create_normalizes_and_validates(self) -> None:
        self.assertEqual(self.admin.email, 'admin@cafe.local')
        self.assertEqual(self.admin.role, ProfileRole.ADMIN)
        self.assertNotEqual(self.admin.password_hash, 'adminpass')

        with self.assertRaisesRegex(ValueError, 'already in use'):
            create_profile(self.db, email='ADMIN@cafe.local', full_name=None, role='cashier', password='secret1')
        with self.assertRaises(ValueError):
            create_profile(self.db, email='no-at-sign', full_name=None, role='cashier', password='secret1')
        with self.assertRaisesRegex(ValueError, 'at least 6'):
            create_profile(self.db, email='caja@cafe.local', full_name=None, role='cashier', password='123')
        with self.assertRaisesRegex(ValueError, 'Unknown role'):
            create_profile(self.db, email='caja@cafe.local', full_name=None, role='owner', password='secret1')

    def test_authenticate_reports_failure_reasons(self) -> None:
        profile, reason = authenticate(self.db, email='ADMIN@cafe.local', password='adminpass')
        self.assertEqual(profile.id, self.admin.id)
        self.assertIsNone(reason)

        self.assertEqual(authenticate(self.db, email='nadie@cafe.local', password='x'), (None, 'UNKNOWN_EMAIL'))
        profile, reason = authenticate(self.db, email='admin@cafe.local', password='wrong-pass')
        self.assertEqual(reason, 'BAD_PASSWORD')
        self.assertEqual(profile.id, self.admin.id)

        cashier = create_profile(self.db, email='caja@cafe.local', full_name='Caja', role='cashier', password='cajapass')
        toggle_profile_status(self.db, profile_id=cashier.id, actor_profile_id=self.admin.id)
        self.assertEqual(cashier.status, ProfileStatus.INACTIVE)
        _, reason = authenticate(self.db, email='caja@cafe.local', password='cajapass')
        self.assertEqual(reason, 'INACTIVE_PROFILE')

    def test_cannot_toggle_own_account(self) -> None:
        with self.assertRaises(PermissionError):
            toggle_profile_status(self.db, profile_id=self.admin.id, actor_profile_id=self.admin.id)
        with self.assertRaisesRegex(ValueError, 'not found'):
            toggle_profile_status(self.db, profile_id=999, actor_profile_id=self.admin.id)

    def test_update_and_search(self) -> None:
        cashier = create_profile(self.db, email='luis@cafe.local', full_name='Luis', role='cashier', password='secret1')
        update_profile(self.db, profile_id=cashier.id, full_name='  Luis Paz ', role='admin')
        self.db.commit()
        self.assertEqual(cashier.full_name, 'Luis Paz')
        self.assertEqual(cashier.role, ProfileRole.ADMIN)

        rows = list_profiles(self.db, search='paz')
        self.assertEqual([row['email'] for row in rows], ['luis@cafe.local'])
        self.assertEqual(len(list_profiles(self.db)), 2)


if __name__ == '__main__':
    unittest.main()
