"""
Users & Authorization Module

User registry and the principal model every ledger operation is authorized
against. Authentication happens upstream; the core only ever sees an
already-authenticated principal carrying a user id and a role.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import (
    ConflictError, InvalidArgumentError, NotFoundError, PermissionDeniedError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageManager, StorageRecord


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Role(Enum):
    """User roles"""
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"


class UserStatus(Enum):
    """User lifecycle states"""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: user id plus role"""
    user_id: str
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


SYSTEM_PRINCIPAL = Principal(user_id="system", role=Role.ADMIN)


def require_admin(principal: Principal, action: str) -> None:
    """Raise PermissionDeniedError unless the principal is an admin"""
    if not principal.is_admin:
        raise PermissionDeniedError(
            f"Admin role required for {action}",
            details={"user_id": principal.user_id, "action": action}
        )


@dataclass
class User(StorageRecord):
    """Registered bank user"""
    email: str
    first_name: str
    last_name: str
    role: Role = Role.CUSTOMER
    status: UserStatus = UserStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_suspended(self) -> bool:
        return self.status == UserStatus.SUSPENDED

    def as_principal(self) -> Principal:
        return Principal(user_id=self.id, role=self.role)


class UserManager:
    """Registers users and manages their status"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
        timeout: Optional[float] = None
    ):
        self.storage = storage
        self.records = StorageManager(storage)
        self.audit_trail = audit_trail
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.table_name = "users"
        self.timeout = timeout
        self.logger = get_logger("summit.users")

    def register_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        role: Role = Role.CUSTOMER,
        status: UserStatus = UserStatus.ACTIVE
    ) -> User:
        """
        Register a new user

        Args:
            email: Login email, unique case-insensitively
            first_name: Given name
            last_name: Family name
            role: CUSTOMER or ADMIN
            status: Initial status

        Returns:
            Created User

        Raises:
            InvalidArgumentError: Malformed email or blank names
            ConflictError: Email already registered
        """
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise InvalidArgumentError(f"Invalid email address: {email!r}")
        if not (first_name or "").strip() or not (last_name or "").strip():
            raise InvalidArgumentError("First and last name are required")

        with self.storage.atomic(timeout=self.timeout):
            if self.get_user_by_email(email):
                raise ConflictError(f"Email already registered: {email}")

            now = self.clock()
            user = User(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                role=role,
                status=status
            )
            self.records.save_record(user, self.table_name)

            self.audit_trail.log_event(
                event_type=AuditEventType.USER_REGISTERED,
                entity_type="user",
                entity_id=user.id,
                metadata={"email": email, "role": role.value, "status": status.value}
            )

        log_action(self.logger, "info", "User registered",
                   user_id=user.id, action="register_user", resource=f"user:{user.id}")
        return user

    def get_user(self, user_id: str) -> User:
        """Get user by ID; raises NotFoundError if unknown"""
        user = self.records.load_record(User, self.table_name, user_id)
        if not user:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    def find_user(self, user_id: str) -> Optional[User]:
        return self.records.load_record(User, self.table_name, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.records.find_one(User, self.table_name, {"email": email.strip().lower()})

    def list_users(self, principal: Principal) -> List[User]:
        """All users (admin only)"""
        require_admin(principal, "list_users")
        return self.records.load_all_records(User, self.table_name)

    def set_user_status(self, user_id: str, status: UserStatus, principal: Principal) -> User:
        """Change a user's status (admin only); setting the current status is a no-op"""
        require_admin(principal, "set_user_status")

        with self.storage.atomic(timeout=self.timeout):
            user = self.get_user(user_id)
            if user.status == status:
                return user

            old_status = user.status
            user.status = status
            user.updated_at = self.clock()
            self.records.save_record(user, self.table_name)

            self.audit_trail.log_event(
                event_type=AuditEventType.USER_STATUS_CHANGED,
                entity_type="user",
                entity_id=user.id,
                metadata={"old_status": old_status.value, "new_status": status.value},
                user_id=principal.user_id
            )

        log_action(self.logger, "info", f"User status changed to {status.value}",
                   user_id=principal.user_id, action="set_user_status", resource=f"user:{user_id}")
        return user
