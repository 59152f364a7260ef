"""
Tests for account provisioning helpers.
"""
import string

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from unittest.mock import patch

from app.db.models import AllowedUserEmail, Profile, User, UserRole
from app.services.accounts import SPECIAL, generate_secure_password, invite_user


class TestGenerateSecurePassword:

    def test_default_length(self):
        assert len(generate_secure_password()) == 16

    def test_requested_length(self):
        for length in (4, 8, 32):
            assert len(generate_secure_password(length)) == length

    def test_contains_every_character_class(self):
        for _ in range(50):
            password = generate_secure_password(4)
            assert any(c in string.ascii_uppercase for c in password)
            assert any(c in string.ascii_lowercase for c in password)
            assert any(c in string.digits for c in password)
            assert any(c in SPECIAL for c in password)

    def test_rejects_short_length(self):
        with pytest.raises(ValueError):
            generate_secure_password(3)

    def test_passwords_differ(self):
        assert len({generate_secure_password() for _ in range(20)}) == 20


class TestInviteRollback:

    def test_profile_failure_removes_login(self, db_session, admin_user):
        real_flush = db_session.flush

        def flush_failing_on_profile(*args, **kwargs):
            if any(isinstance(obj, Profile) for obj in db_session.new):
                raise SQLAlchemyError("profile insert failed")
            return real_flush(*args, **kwargs)

        with patch.object(db_session, "flush", side_effect=flush_failing_on_profile):
            with pytest.raises(HTTPException) as exc_info:
                invite_user(
                    db_session,
                    email="rollback@osh.vn",
                    role=UserRole.ADMIN.value,
                    invited_by=admin_user.id,
                )

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Failed to create user profile"
        assert db_session.query(User).filter(User.email == "rollback@osh.vn").first() is None
        assert db_session.get(AllowedUserEmail, "rollback@osh.vn") is None
        assert db_session.query(Profile).filter(Profile.email == "rollback@osh.vn").first() is None
