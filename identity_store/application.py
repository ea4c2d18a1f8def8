"""Wire the identity store and its HTTP surface together from configuration."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI

from .api import create_app
from .config import StoreConfig, import_object, load_config_from_env
from .credentials import CredentialGuard, LengthPolicy, PasslibHasher, PasswordPolicy
from .database import Database, resolve_database_path
from .filters import FilterTranslator
from .store import IdentityStore

logger = logging.getLogger("identity_store.application")


def _instantiate(path: str, required_method: str) -> Any:
    target = import_object(path)
    if isinstance(target, type):
        target = target()
    if not callable(getattr(target, required_method, None)):
        raise ValueError(f"{path} does not provide a {required_method}() method")
    return target


def build_database(config: StoreConfig, *, initialize: bool = True) -> Database:
    db_path = config.database_path or resolve_database_path(None)
    database = Database(db_path, timeout=config.connect_timeout)
    if initialize:
        database.initialize()
        logger.info("Identity database initialised at %s", db_path)
    return database


def build_store(config: StoreConfig, *, database: Optional[Database] = None) -> IdentityStore:
    """Create an :class:`IdentityStore` with every collaborator resolved from ``config``."""

    if database is None:
        database = build_database(config)

    policy: PasswordPolicy
    if config.password_policy:
        policy = _instantiate(config.password_policy, "validate")
    else:
        policy = LengthPolicy(min_length=config.password_min_length, max_length=config.password_max_length)

    translator: Optional[FilterTranslator] = None
    if config.filter_translator:
        translator = _instantiate(config.filter_translator, "convert")
    else:
        logger.info("No filter translator configured; search is disabled")

    guard = CredentialGuard(policy, PasslibHasher(config.hash_schemes, rounds=config.hash_rounds))
    return IdentityStore(
        database,
        guard=guard,
        translator=translator,
        deactivate_on_delete=config.deactivate_on_delete,
        page_size=config.page_size,
    )


def create_application(*, config: Optional[StoreConfig] = None) -> FastAPI:
    """Create the ASGI application serving the identity store."""

    if config is None:
        config = load_config_from_env()
    return create_app(store=build_store(config))


__all__ = ["build_database", "build_store", "create_application"]
