import logging
import re
from typing import Optional, Tuple

from .models import db, User
from .registration_service import unit_of_work, require_principal
from shared.errors import EmailTaken, Forbidden, InvalidRequest, NotFound, Unauthenticated
from shared.identity_token import IdentityToken
from shared.policy import Principal, Role, is_admin, is_owner_or_admin

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")
PROFILE_FIELDS = ('name', 'email')


class AccountService:
    """User sign-up, login and role administration."""

    def __init__(self, tokens: IdentityToken):
        self.tokens = tokens

    def register_user(self, email: str, password: str, name: str = None) -> User:
        email = User.normalize_email(email)
        if not email or '@' not in email:
            raise InvalidRequest("A valid email is required")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        # The unique index still catches concurrent sign-ups
        if User.query.filter_by(email=email).first():
            raise EmailTaken("An account with this email already exists")

        with unit_of_work():
            user = User(email=email, name=name, role=Role.USER.value)
            user.set_password(password)
            db.session.add(user)
            db.session.flush()

        logger.info(f"Registered user {user.id}")
        return user

    def authenticate(self, email: str, password: str, now: float = None) -> Tuple[User, str, int]:
        user = User.query.filter_by(email=User.normalize_email(email)).first()
        if user is None or not user.check_password(password or ''):
            logger.warning("Failed login attempt")
            raise Unauthenticated("Invalid email or password")

        token, expires_at = self.tokens.issue(user.id, user.role_enum, now=now)
        return user, token, expires_at

    def get_user(self, principal: Optional[Principal], user_id: int) -> User:
        principal = require_principal(principal)
        if not is_owner_or_admin(principal, user_id):
            raise Forbidden("You can only view your own account")

        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def ensure_admin(self, email: str, password: str) -> User:
        """Create or promote the bootstrap admin account used at deploy time."""
        user = User.query.filter_by(email=User.normalize_email(email)).first()
        if user is None:
            user = self.register_user(email, password, name='Administrator')

        if user.role != Role.ADMIN.value:
            with unit_of_work():
                user.role = Role.ADMIN.value
            logger.info(f"Promoted user {user.id} to admin")
        return user

    def change_role(self, principal: Optional[Principal], user_id: int, role) -> User:
        principal = require_principal(principal)
        if not is_admin(principal):
            logger.warning(f"Denied role change on user {user_id} by user {principal.subject_id}")
            raise Forbidden("Only admins can change roles")

        try:
            new_role = Role.parse(role)
        except ValueError:
            raise InvalidRequest(f"Unknown role '{role}'")

        with unit_of_work():
            user = db.session.get(User, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found")
            user.role = new_role.value

        logger.info(f"User {user_id} role set to {new_role.value} by admin {principal.subject_id}")
        return user

    def get_me(self, principal: Optional[Principal]) -> User:
        principal = require_principal(principal)
        return self.get_user(principal, principal.subject_id)

    def update_me(self, principal: Optional[Principal], changes: dict) -> User:
        """Update the caller's own name and/or email."""
        principal = require_principal(principal)
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise InvalidRequest(f"Cannot update fields: {sorted(unknown)}")

        name = email = None
        if 'name' in changes:
            name = changes['name'].strip() if isinstance(changes['name'], str) else ''
            if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
                raise InvalidRequest(
                    f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters"
                )
        if 'email' in changes:
            email = User.normalize_email(changes['email'] if isinstance(changes['email'], str) else '')
            if not EMAIL_PATTERN.match(email):
                raise InvalidRequest("A valid email is required")

        with unit_of_work():
            user = db.session.get(User, principal.subject_id)
            if user is None:
                raise NotFound(f"User {principal.subject_id} not found")
            if email is not None and email != user.email:
                # The unique index still catches a concurrent claim
                if User.query.filter(User.email == email, User.id != user.id).first():
                    raise EmailTaken("An account with this email already exists")
                user.email = email
            if name is not None:
                user.name = name

        logger.info(f"User {user.id} updated profile: {sorted(changes)}")
        return user
