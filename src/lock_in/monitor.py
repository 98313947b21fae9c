"""Turns foreground changes into allow/block enforcement."""

from collections.abc import Callable, Iterable

from loguru import logger

from lock_in.analytics import SessionHistory
from lock_in.authorization import WhitelistManager, authorize
from lock_in.schema import AuthorizationDecision, ForegroundEvent, RuleCategory
from lock_in.session import SessionAction, SessionLifecycleManager
from lock_in.settings import settings

Enforcer = Callable[[str], None]


class ForegroundAppMonitor:
    def __init__(
        self,
        sessions: SessionLifecycleManager,
        whitelist: WhitelistManager,
        analytics: SessionHistory,
        enforcer: Enforcer | None = None,
        debounce_seconds: float | None = None,
        self_ids: Iterable[str] | None = None,
    ):
        self.sessions = sessions
        self.whitelist = whitelist
        self.analytics = analytics
        self.enforcer = enforcer
        self.debounce_seconds = debounce_seconds if debounce_seconds is not None else settings.debounce_seconds
        self.self_ids = list(self_ids if self_ids is not None else settings.app_identities)

        self.last_seen: ForegroundEvent | None = None
        self._last_processed: ForegroundEvent | None = None

    def _is_duplicate(self, event: ForegroundEvent) -> bool:
        previous = self._last_processed
        return (
            previous is not None
            and previous.package_id == event.package_id
            and 0 <= event.timestamp - previous.timestamp < self.debounce_seconds
        )

    def handle(self, event: ForegroundEvent) -> AuthorizationDecision | None:
        """Processes one foreground event. Returns the decision, or None if skipped."""
        self.last_seen = event

        if self.sessions.reconcile().action is not SessionAction.CONTINUE:
            return None

        if self._is_duplicate(event):
            return None
        self._last_processed = event

        decision = authorize(event.package_id, self.whitelist.snapshot(), self.self_ids)
        if decision.allowed:
            self._on_allow(decision)
        else:
            self._on_block(decision)
        return decision

    def _on_allow(self, decision: AuthorizationDecision) -> None:
        if decision.category is RuleCategory.SELF:
            return
        logger.debug(f"Allowed {decision.package_id} ({decision.category.value})")
        self.sessions.stamp_allowed()
        self.analytics.app_access(decision.package_id)

    def _on_block(self, decision: AuthorizationDecision) -> None:
        # An empty desktop right after switching to an allowed app is a
        # transition, not an attempt to leave the session.
        if not decision.package_id:
            if not self.sessions.recently_allowed():
                self.sessions.request_ui(self.sessions.current_token(), "no app in focus")
            return

        logger.info(f"Blocked {decision.package_id} ({decision.category.value})")
        self.sessions.request_ui(self.sessions.current_token(), f"blocked {decision.package_id}")
        if self.enforcer is not None:
            try:
                self.enforcer(decision.package_id)
            except Exception:
                logger.exception(f"Failed to close {decision.package_id}")
        self.analytics.blocked_attempt(decision.package_id)
