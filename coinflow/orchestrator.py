"""
Application wiring for Coinflow.

DESIGN DECISION: Nothing in the package keeps module-level ledger state.
``create_app_components`` builds one ``CashbookContext`` per session and
binds it to the session's current-user observable; the application root
owns the returned objects and passes them to whatever needs them.
"""

from pathlib import Path
from typing import NamedTuple, Optional

from coinflow.audit import AuditLogger, configure_logging
from coinflow.config import get_settings
from coinflow.engine.context import CashbookContext
from coinflow.services.identity import SessionState
from coinflow.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    JsonFileCache,
    LocalCacheInterface,
    RemoteStoreInterface,
)


class AppComponents(NamedTuple):
    context: CashbookContext
    session: SessionState
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_remote: bool = True,
    use_cache: Optional[bool] = None,
    cache_directory: Optional[Path] = None,
    remote: Optional[RemoteStoreInterface] = None,
    cache: Optional[LocalCacheInterface] = None,
    user_id: Optional[str] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to build the Google Sheets remote store.
                    Set to False to run anonymously only.
        use_cache: Whether to mirror snapshots to JSON files. Defaults to
                   the ``COINFLOW_CACHE_ENABLED`` setting.
        cache_directory: Overrides the configured cache directory
        remote: A ready remote store (skips Google Sheets)
        cache: A ready cache (skips the JSON file cache)
        user_id: Signed-in user at start-up, if any

    Returns:
        AppComponents(context, session, audit_logger, sheets_client)

    The start-up scope (from `user_id`) is activated but not loaded: the
    factory runs outside any event loop, and the session only triggers loads
    on later sign-in or sign-out. Await ``context.load()`` once before use.
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)
    audit_logger = AuditLogger()

    sheets_client = None
    if remote is None and use_remote:
        try:
            sheets_client = GoogleSheetsClient(settings.remote_store)
            remote = GoogleSheetsRemoteStore(sheets_client)
        except Exception as e:
            # Remote store not configured - continue with local data only
            audit_logger.log_error(
                error_type="remote_store_unavailable",
                error_message=str(e),
            )
            sheets_client = None
            remote = None

    if cache is None:
        cache_settings = settings.local_cache
        enabled = cache_settings.enabled if use_cache is None else use_cache
        if enabled:
            cache = JsonFileCache(directory=cache_directory or cache_settings.directory)

    context = CashbookContext(
        audit_logger=audit_logger,
        remote=remote,
        cache=cache,
        default_currency=app_settings.default_currency,
    )
    session = SessionState(user_id=user_id)
    context.store.activate(session.scope)
    context.bind_session(session)

    return AppComponents(
        context=context,
        session=session,
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
