# Overview: Service-layer operations for product categories.

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..models import Category, Product
from ..validation import ConflictError
from .concurrency import atomic_unit, is_unique_violation

logger = logging.getLogger(__name__)


class CategoryError(Exception):
    """Raised for category rule violations."""


class CategoryNotFoundError(CategoryError):
    pass


class CategoryInUse(CategoryError):
    pass


class DuplicateCategory(ConflictError):
    def __init__(self):
        super().__init__("Category with this name already exists")


class CategoryService:
    def __init__(self, session, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _atomic(self, func):
        return atomic_unit(self.session, func, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def _product_counts(self) -> dict[int, int]:
        rows = (
            self.session.query(Product.category_id, func.count(Product.id))
            .filter(Product.category_id.isnot(None))
            .group_by(Product.category_id)
            .all()
        )
        return {category_id: count for category_id, count in rows}

    def list_categories(self) -> list[dict]:
        counts = self._product_counts()
        categories = self.session.query(Category).order_by(Category.name.asc()).all()
        result = []
        for category in categories:
            data = category.to_dict()
            data["productCount"] = counts.get(category.id, 0)
            result.append(data)
        return result

    def get_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise CategoryNotFoundError("Category not found")
        return category

    def category_detail(self, category_id: int) -> dict:
        category = self.get_category(category_id)
        data = category.to_dict()
        data["products"] = [
            {
                "id": p.id,
                "name": p.name,
                "sku": p.sku,
                "price": p.to_dict()["price"],
                "quantity": p.quantity,
                "isActive": p.is_active,
            }
            for p in sorted(category.products, key=lambda p: p.name)
        ]
        data["productCount"] = len(data["products"])
        return data

    def _ensure_name_free(self, name: str, exclude_id: int | None = None) -> None:
        query = self.session.query(Category.id).filter(Category.name == name)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first():
            raise DuplicateCategory()

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            if is_unique_violation(exc, "uq_categories_name", "categories.name"):
                raise DuplicateCategory()
            raise

    def create_category(self, patch: dict) -> Category:
        def _op():
            self._ensure_name_free(patch["name"])
            category = Category(**patch)
            self.session.add(category)
            self._flush()
            return category

        category = self._atomic(_op)
        logger.info("Category %s created (%s)", category.id, category.name)
        return category

    def update_category(self, category_id: int, patch: dict) -> Category:
        def _op():
            category = self.get_category(category_id)
            if "name" in patch and patch["name"] != category.name:
                self._ensure_name_free(patch["name"], exclude_id=category.id)
            for key, value in patch.items():
                setattr(category, key, value)
            self._flush()
            return category

        return self._atomic(_op)

    def delete_category(self, category_id: int) -> None:
        def _op():
            category = self.get_category(category_id)
            in_use = self.session.query(Product.id).filter(Product.category_id == category.id).first()
            if in_use:
                raise CategoryInUse(
                    "Cannot delete category that has products. Please move or delete products first."
                )
            self.session.delete(category)

        self._atomic(_op)
        logger.info("Category %s deleted", category_id)
