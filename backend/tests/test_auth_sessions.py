import unittest
from datetime import timedelta

from bizdesk import create_app
from bizdesk.extensions import db
from bizdesk.models import Account, Business, SessionToken, User
from bizdesk.services import auth_service, session_service
from bizdesk.services.auth_service import PasswordValidationError
from bizdesk.time_utils import utcnow


class AuthAndSessionTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "BCRYPT_ROUNDS": 4,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        self.business, self.owner = auth_service.register_business(
            "Corner Shop", "owner@corner.test", "Password123", "Corner Owner",
        )

    def test_password_strength_rules(self):
        for weak in ("", "Pass1", "password123", "PASSWORD123", "Passwords"):
            with self.assertRaises(PasswordValidationError):
                auth_service.validate_password_strength(weak)
        auth_service.validate_password_strength("Password123")

    def test_hash_and_verify(self):
        hashed = auth_service.hash_password("Password123")
        self.assertNotEqual(hashed, "Password123")
        self.assertTrue(auth_service.verify_password("Password123", hashed))
        self.assertFalse(auth_service.verify_password("Password124", hashed))
        self.assertFalse(auth_service.verify_password("Password123", "not-a-hash"))

    def test_register_creates_default_accounts(self):
        names = sorted(a.name for a in Account.query.filter_by(business_id=self.business.id))
        self.assertEqual(names, ["Bank Account", "Cash"])
        self.assertEqual(self.owner.role, "owner")

    def test_authenticate(self):
        self.assertEqual(auth_service.authenticate("OWNER@corner.test", "Password123").id, self.owner.id)
        self.assertIsNone(auth_service.authenticate("owner@corner.test", "Wrong12345"))
        self.assertIsNone(auth_service.authenticate("nobody@corner.test", "Password123"))

    def test_inactive_business_cannot_log_in(self):
        business = db.session.get(Business, self.business.id)
        business.is_active = False
        db.session.commit()
        self.assertIsNone(auth_service.authenticate("owner@corner.test", "Password123"))

    def test_session_stores_only_token_hash(self):
        session, token = session_service.create_session(self.owner.id)
        self.assertEqual(len(token), 64)
        self.assertEqual(session.token_hash, session_service.hash_token(token))
        self.assertNotEqual(session.token_hash, token)

    def test_validate_and_revoke(self):
        _, token = session_service.create_session(self.owner.id)
        context = session_service.validate_session(token)
        self.assertEqual(context.user.id, self.owner.id)
        self.assertEqual(context.business_id, self.business.id)

        self.assertTrue(session_service.revoke_session(token))
        self.assertIsNone(session_service.validate_session(token))
        self.assertFalse(session_service.revoke_session(token))

    def test_idle_session_is_revoked(self):
        session, token = session_service.create_session(self.owner.id)
        session.last_used_at = utcnow() - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db.session.commit()

        self.assertIsNone(session_service.validate_session(token))
        self.assertTrue(db.session.get(SessionToken, session.id).is_revoked)

    def test_absolute_expiry(self):
        session, token = session_service.create_session(self.owner.id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()
        self.assertIsNone(session_service.validate_session(token))

    def test_deactivated_user_loses_session(self):
        _, token = session_service.create_session(self.owner.id)
        user = db.session.get(User, self.owner.id)
        user.is_active = False
        db.session.commit()
        self.assertIsNone(session_service.validate_session(token))

    def test_cleanup_removes_only_old_dead_sessions(self):
        old, _ = session_service.create_session(self.owner.id)
        old.created_at = utcnow() - timedelta(days=40)
        old.expires_at = utcnow() - timedelta(days=39)
        live, _ = session_service.create_session(self.owner.id)
        db.session.commit()
        old_id, live_id = old.id, live.id

        self.assertEqual(session_service.cleanup_expired_sessions(), 1)
        db.session.expunge_all()
        self.assertIsNone(db.session.get(SessionToken, old_id))
        self.assertIsNotNone(db.session.get(SessionToken, live_id))


if __name__ == "__main__":
    unittest.main()
