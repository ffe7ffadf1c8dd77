# Overview: User administration; role-aware edits, activation and password changes.

from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..models import Sale, StockMovement, User
from ..validation import ConflictError
from .auth_service import AuthContext, hash_password, verify_password
from .concurrency import atomic_unit, is_unique_violation

logger = logging.getLogger(__name__)

# Fields only an ADMIN may change, on anyone including themselves
ADMIN_ONLY_FIELDS = {"role", "is_active"}


class UserError(Exception):
    """Raised for user administration rule violations."""


class UserNotFound(UserError):
    pass


class UserAccessDenied(UserError):
    pass


class UserInUse(UserError):
    pass


class DuplicateEmail(ConflictError):
    def __init__(self):
        super().__init__("Email already exists")


class UserAdmin:
    def __init__(
        self,
        session,
        *,
        password_rounds: int = 12,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.session = session
        self.password_rounds = password_rounds
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _atomic(self, func):
        return atomic_unit(self.session, func, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def _require_self_or_admin(self, actor: AuthContext, user_id: int) -> None:
        if not actor.is_admin and actor.user_id != user_id:
            raise UserAccessDenied("Access denied")

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFound("User not found")
        return user

    def list_users(
        self,
        *,
        search: str = "",
        role: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        query = self.session.query(User)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(User.first_name).like(pattern),
                    func.lower(User.last_name).like(pattern),
                    func.lower(User.email).like(pattern),
                )
            )
        if role:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))

        total = query.count()
        users = (
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        sale_counts = dict(
            self.session.query(Sale.sold_by_id, func.count(Sale.id))
            .filter(Sale.sold_by_id.in_([u.id for u in users]))
            .group_by(Sale.sold_by_id)
            .all()
        ) if users else {}

        items = []
        for user in users:
            data = user.to_dict()
            data["salesCount"] = sale_counts.get(user.id, 0)
            items.append(data)

        return {
            "users": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def user_profile(self, actor: AuthContext, user_id: int) -> dict:
        """User record plus sale count and the 10 most recent sales."""
        self._require_self_or_admin(actor, user_id)
        user = self.get_user(user_id)

        recent = (
            self.session.query(Sale)
            .filter(Sale.sold_by_id == user.id)
            .order_by(Sale.created_at.desc(), Sale.id.desc())
            .limit(10)
            .all()
        )
        data = user.to_dict()
        data["salesCount"] = self.session.query(func.count(Sale.id)).filter(Sale.sold_by_id == user.id).scalar()
        data["recentSales"] = []
        for sale in recent:
            summary = sale.to_dict(include_items=False)
            data["recentSales"].append(
                {key: summary[key] for key in ("id", "saleNumber", "finalAmount", "status", "createdAt")}
            )
        return data

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            if is_unique_violation(exc, "uq_users_email", "users.email"):
                raise DuplicateEmail()
            raise

    def _ensure_email_free(self, email: str, exclude_id: int | None = None) -> None:
        query = self.session.query(User.id).filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise DuplicateEmail()

    def create_user(self, patch: dict, password: str) -> User:
        """Create a user from a validated patch; password is hashed with bcrypt."""
        password_hash = hash_password(password, rounds=self.password_rounds)

        def _op():
            self._ensure_email_free(patch["email"])
            user = User(password_hash=password_hash, **patch)
            self.session.add(user)
            self._flush()
            return user

        user = self._atomic(_op)
        logger.info("User %s created with role %s", user.id, user.role)
        return user

    def update_user(self, actor: AuthContext, user_id: int, patch: dict) -> User:
        """
        Update profile fields.

        Non-admins may only edit themselves, and role / is_active are dropped
        from their patch rather than rejected.
        """
        self._require_self_or_admin(actor, user_id)
        if not actor.is_admin:
            patch = {k: v for k, v in patch.items() if k not in ADMIN_ONLY_FIELDS}

        def _op():
            user = self.get_user(user_id)
            if "email" in patch and patch["email"] != user.email:
                self._ensure_email_free(patch["email"], exclude_id=user.id)
            for key, value in patch.items():
                setattr(user, key, value)
            self._flush()
            return user

        return self._atomic(_op)

    def change_password(
        self,
        actor: AuthContext,
        user_id: int,
        new_password: str,
        current_password: str | None = None,
    ) -> None:
        """
        Change a password. Changing your own requires the current password;
        an ADMIN resetting someone else's does not.
        """
        self._require_self_or_admin(actor, user_id)
        password_hash = hash_password(new_password, rounds=self.password_rounds)

        def _op():
            user = self.get_user(user_id)
            if actor.user_id == user.id:
                if not current_password or not verify_password(current_password, user.password_hash):
                    raise UserError("Current password is incorrect")
            user.password_hash = password_hash

        self._atomic(_op)
        logger.info("Password changed for user %s by user %s", user_id, actor.user_id)

    def set_active(self, actor: AuthContext, user_id: int, active: bool) -> User:
        if not active and actor.user_id == user_id:
            raise UserError("Cannot deactivate your own account")

        def _op():
            user = self.get_user(user_id)
            user.is_active = active
            return user

        user = self._atomic(_op)
        logger.info("User %s %s by user %s", user_id, "activated" if active else "deactivated", actor.user_id)
        return user

    def delete_user(self, actor: AuthContext, user_id: int) -> None:
        if actor.user_id == user_id:
            raise UserError("Cannot delete your own account")

        def _op():
            user = self.get_user(user_id)
            has_sales = self.session.query(Sale.id).filter(Sale.sold_by_id == user.id).first()
            if has_sales:
                raise UserInUse("Cannot delete user with sales history. Consider deactivating instead.")
            has_movements = (
                self.session.query(StockMovement.id).filter(StockMovement.actor_user_id == user.id).first()
            )
            if has_movements:
                raise UserInUse("Cannot delete user with stock movement history. Consider deactivating instead.")
            self.session.delete(user)

        self._atomic(_op)
        logger.info("User %s deleted by user %s", user_id, actor.user_id)
