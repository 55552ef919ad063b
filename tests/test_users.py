"""
Test suite for the user registry and principal checks
"""

import pytest

from summit_ledger.audit import AuditTrail, AuditEventType
from summit_ledger.errors import (
    ConflictError, InvalidArgumentError, NotFoundError, PermissionDeniedError
)
from summit_ledger.storage import InMemoryStorage
from summit_ledger.users import (
    Principal, Role, SYSTEM_PRINCIPAL, UserManager, UserStatus, require_admin
)


ADMIN = Principal(user_id="admin-1", role=Role.ADMIN)


class TestPrincipal:

    def test_roles(self):
        assert ADMIN.is_admin
        assert SYSTEM_PRINCIPAL.is_admin
        assert not Principal(user_id="u1").is_admin

    def test_require_admin(self):
        require_admin(ADMIN, "anything")
        with pytest.raises(PermissionDeniedError):
            require_admin(Principal(user_id="u1"), "anything")


class TestUserManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.users = UserManager(self.storage, self.audit_trail)

    def test_register_user(self):
        user = self.users.register_user("Alice@Example.com ", "Alice", "Smith")

        assert user.email == "alice@example.com"
        assert user.full_name == "Alice Smith"
        assert user.role == Role.CUSTOMER
        assert user.status == UserStatus.ACTIVE
        assert self.users.get_user(user.id).email == "alice@example.com"
        assert self.users.get_user_by_email("ALICE@example.com").id == user.id
        assert user.as_principal() == Principal(user_id=user.id, role=Role.CUSTOMER)

        events = self.audit_trail.get_events_by_type(AuditEventType.USER_REGISTERED)
        assert [e.entity_id for e in events] == [user.id]

    def test_duplicate_email_is_a_conflict(self):
        self.users.register_user("bob@example.com", "Bob", "Jones")
        with pytest.raises(ConflictError):
            self.users.register_user("BOB@example.com", "Robert", "Jones")

    @pytest.mark.parametrize("email,first,last", [
        ("not-an-email", "A", "B"),
        ("a@b.com", "", "B"),
        ("a@b.com", "A", "   "),
    ])
    def test_invalid_registration(self, email, first, last):
        with pytest.raises(InvalidArgumentError):
            self.users.register_user(email, first, last)

    def test_unknown_user(self):
        with pytest.raises(NotFoundError):
            self.users.get_user("missing")
        assert self.users.find_user("missing") is None

    def test_list_users_requires_admin(self):
        user = self.users.register_user("carol@example.com", "Carol", "White")

        assert [u.id for u in self.users.list_users(ADMIN)] == [user.id]
        with pytest.raises(PermissionDeniedError):
            self.users.list_users(user.as_principal())

    def test_set_user_status(self):
        user = self.users.register_user("dan@example.com", "Dan", "Brown")

        suspended = self.users.set_user_status(user.id, UserStatus.SUSPENDED, ADMIN)
        assert suspended.is_suspended
        assert self.users.get_user(user.id).status == UserStatus.SUSPENDED

        # Setting the same status again is a no-op
        self.users.set_user_status(user.id, UserStatus.SUSPENDED, ADMIN)
        assert len(self.audit_trail.get_events_by_type(AuditEventType.USER_STATUS_CHANGED)) == 1

        with pytest.raises(PermissionDeniedError):
            self.users.set_user_status(user.id, UserStatus.ACTIVE, user.as_principal())
