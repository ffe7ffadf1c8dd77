# Overview: Service wiring; builds the service objects once per app and hands them to routes.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .category_service import CategoryService
from .ledger_service import StockLedger
from .products_service import ProductCatalog
from .sales_service import SaleEngine
from .user_service import UserAdmin

EXTENSION_KEY = "stockroom.services"


@dataclass
class ServiceRegistry:
    ledger: StockLedger
    catalog: ProductCatalog
    sales: SaleEngine
    categories: CategoryService
    users: UserAdmin


def build_services(session, config) -> ServiceRegistry:
    """
    Construct every service over one session.

    session is normally Flask-SQLAlchemy's scoped session, so each request still
    works on its own underlying Session.
    """
    retry = {
        "retry_attempts": config.get("ATOMIC_RETRY_ATTEMPTS", 3),
        "retry_backoff": config.get("ATOMIC_RETRY_BACKOFF", 0.1),
    }
    ledger = StockLedger(session)
    catalog = ProductCatalog(session, ledger, **retry)
    return ServiceRegistry(
        ledger=ledger,
        catalog=catalog,
        sales=SaleEngine(session, catalog, ledger, **retry),
        categories=CategoryService(session, **retry),
        users=UserAdmin(session, password_rounds=config.get("BCRYPT_ROUNDS", 12), **retry),
    )


def init_services(app, session) -> ServiceRegistry:
    services = build_services(session, app.config)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
