"""
Current-user observable.

Authentication itself is handled by an external identity provider. The
application feeds sign-in and sign-out results into ``SessionState``; the
engine subscribes and reloads whenever the scope changes.
"""

from typing import Callable, Optional

import structlog

from coinflow.models.ledger import Scope


ScopeListener = Callable[[Scope], None]

logger = structlog.get_logger(__name__)


class SessionState:
    """Holds the signed-in user id (None when anonymous) and notifies listeners."""

    def __init__(self, user_id: Optional[str] = None):
        self._scope = Scope(user_id=user_id)
        self._listeners: list[ScopeListener] = []

    @property
    def scope(self) -> Scope:
        return self._scope

    @property
    def user_id(self) -> Optional[str]:
        return self._scope.user_id

    def subscribe(self, listener: ScopeListener) -> Callable[[], None]:
        """Register `listener`; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required to sign in")
        self._set(Scope(user_id=user_id))

    def sign_out(self) -> None:
        self._set(Scope.anonymous())

    def _set(self, scope: Scope) -> None:
        if scope == self._scope:
            return
        self._scope = scope
        logger.info("session_scope_changed", scope_key=scope.key)
        for listener in list(self._listeners):
            listener(scope)
