"""
Shared fixtures.

No test talks to Google Sheets: signed-in contexts use the in-memory remote
store, and the local cache writes JSON files under ``tmp_path``.

Background writes only run inside an event loop, so every test that needs
them finishes with ``run(context.drain())`` (or drains inside its own
``asyncio.run`` block).
"""

import pytest

from coinflow.audit import AuditLogger
from coinflow.engine.context import CashbookContext
from coinflow.models.ledger import Scope
from coinflow.services.storage import InMemoryRemoteStore, JsonFileCache

from tests.helpers import USER_ID, load_and_drain, run


@pytest.fixture
def audit_logger():
    logger = AuditLogger()
    logger.keep_history()
    return logger


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def cache(tmp_path):
    return JsonFileCache(directory=tmp_path / "cache")


@pytest.fixture
def context(audit_logger, cache):
    """Anonymous context, loaded (and therefore seeded) from an empty cache."""
    ctx = CashbookContext(audit_logger=audit_logger, cache=cache)
    run(load_and_drain(ctx, Scope.anonymous()))
    return ctx


@pytest.fixture
def signed_in(audit_logger, remote, cache):
    """Context for USER_ID backed by the in-memory remote store."""
    ctx = CashbookContext(audit_logger=audit_logger, remote=remote, cache=cache)
    run(load_and_drain(ctx, Scope(user_id=USER_ID)))
    return ctx
