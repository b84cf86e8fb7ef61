# Overview: Per-request construction of the service graph from app config.

"""
Service wiring.

Services take their collaborators through their constructors. The HTTP
layer calls get_services() which builds one graph per request on top of
db.session and caches it on flask.g.

app.extensions entries:
- "bakery_clock": clock object with now(); SystemClock when absent
- "bakery_session_store": process-wide InMemorySessionStore when
  SESSION_STORE = "memory"
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g

from ..extensions import db
from ..time_utils import SystemClock
from .auth_service import AuthSessionManager, AuthSettings, BcryptPasswordHasher
from .gateway import PersistenceGateway
from .inventory_service import InventoryLedger, ProductCatalog
from .sales_service import SalesEngine
from .session_service import InMemorySessionStore, SqlSessionStore


@dataclass
class Services:
    gateway: PersistenceGateway
    catalog: ProductCatalog
    ledger: InventoryLedger
    sales: SalesEngine
    auth: AuthSessionManager


def _session_store(app, gateway):
    if app.config.get("SESSION_STORE", "sql") == "memory":
        return app.extensions.setdefault("bakery_session_store", InMemorySessionStore())
    return SqlSessionStore(gateway)


def build_services(app, session=None) -> Services:
    config = app.config
    clock = app.extensions.get("bakery_clock") or SystemClock()
    gateway = PersistenceGateway(
        session if session is not None else db.session,
        retry_attempts=config.get("DB_RETRY_ATTEMPTS", 3),
        backoff_base=config.get("DB_RETRY_BACKOFF", 0.1),
    )
    catalog = ProductCatalog(gateway)
    ledger = InventoryLedger(gateway, clock=clock, catalog=catalog)
    sales = SalesEngine(gateway, ledger, clock=clock, company_info=config.get("COMPANY_INFO"))
    auth = AuthSessionManager(
        gateway,
        _session_store(app, gateway),
        BcryptPasswordHasher(config.get("BCRYPT_ROUNDS", 12)),
        AuthSettings.from_config(config),
        clock=clock,
    )
    return Services(gateway=gateway, catalog=catalog, ledger=ledger, sales=sales, auth=auth)


def get_services() -> Services:
    """Services for the current request (built once, cached on g)."""
    services = g.get("bakery_services")
    if services is None:
        services = build_services(current_app._get_current_object())
        g.bakery_services = services
    return services
