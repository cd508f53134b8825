"""Delegated Microsoft Graph session handling.

A :class:`SessionManager` owns the single signed-in session of the console. It
verifies that the granted scopes cover the required capability set and, when
they do not, signs out and signs in again with the full set; a live session
cannot be elevated incrementally.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

import msal
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from .config import GraphConfig
from .graph_client import SessionExpiredError


logger = logging.getLogger(__name__)

GRAPH_RESOURCE = "https://graph.microsoft.com/"
# Reserved OIDC scopes msal adds to every request; never part of a capability check.
_RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access", "email"})


class SessionError(RuntimeError):
    """Raised when a session cannot be established after the allowed attempts."""


def normalize_scope(scope: str) -> str:
    cleaned = scope.strip()
    if cleaned.lower().startswith(GRAPH_RESOURCE):
        cleaned = cleaned[len(GRAPH_RESOURCE) :]
    return cleaned.lower()


def normalize_scopes(scopes: Iterable[str]) -> FrozenSet[str]:
    normalized = {normalize_scope(scope) for scope in scopes if scope and scope.strip()}
    return frozenset(normalized - _RESERVED_SCOPES)


@dataclass
class SessionContext:
    """The active signed-in session and the scopes it was granted."""

    account: Optional[Dict[str, Any]]
    scopes: FrozenSet[str]
    valid: bool = True

    @property
    def username(self) -> str:
        if not self.account:
            return "<unknown>"
        return str(self.account.get("username") or "<unknown>")


class SessionManager:
    """Establishes, verifies and tears down the delegated Graph session."""

    def __init__(
        self,
        config: GraphConfig,
        app: Optional[msal.PublicClientApplication] = None,
        notify: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._config = config
        self._app = app or msal.PublicClientApplication(
            client_id=config.client_id,
            authority=config.authority,
        )
        self._notify = notify or (lambda message: logger.info("%s", message))
        self.required_scopes: tuple[str, ...] = tuple(config.scopes)
        self._context: Optional[SessionContext] = None

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    @property
    def is_connected(self) -> bool:
        return self._context is not None and self._context.valid

    def missing_scopes(self) -> FrozenSet[str]:
        required = normalize_scopes(self.required_scopes)
        if self._context is None:
            return required
        return required - self._context.scopes

    # ------------------------------------------------------------------ #
    # Connection lifecycle                                               #
    # ------------------------------------------------------------------ #
    def ensure_connected(self) -> bool:
        """Make sure a valid session holding every required scope exists.

        Failures are logged and reported through the return value; retrying is
        left to the caller.
        """

        context = self._context
        if context is not None:
            if context.valid and not self.missing_scopes():
                return True
            if context.valid:
                logger.warning(
                    "Session for %s lacks scopes %s; reconnecting with the full set.",
                    context.username,
                    ", ".join(sorted(self.missing_scopes())),
                )
            else:
                logger.info("Session for %s is no longer valid; reconnecting.", context.username)
            self.disconnect()
        return self._connect()

    def _connect(self) -> bool:
        scopes = list(self.required_scopes)
        try:
            result = self._acquire_token(scopes)
        except Exception as exc:
            logger.error("Sign-in to Microsoft Graph failed.", extra={"details": str(exc)})
            return False

        if not result or "access_token" not in result:
            error = (result or {}).get("error", "sign_in_failed")
            description = (result or {}).get("error_description", "No token was returned.")
            logger.error("Sign-in to Microsoft Graph failed.", extra={"details": f"{error}: {description}"})
            return False

        granted = result.get("scope") or scopes
        if isinstance(granted, str):
            granted = granted.split()
        account = self._resolve_account(result)
        self._context = SessionContext(account=account, scopes=normalize_scopes(granted))

        missing = self.missing_scopes()
        if missing:
            logger.error(
                "Signed-in session was not granted the required scopes.",
                extra={"details": ", ".join(sorted(missing))},
            )
            return False

        logger.info("Connected to Microsoft Graph as %s.", self._context.username)
        return True

    def _acquire_token(self, scopes: list[str]) -> Optional[Dict[str, Any]]:
        if self._config.auth_flow == "device_code":
            flow = self._app.initiate_device_flow(scopes=scopes)
            if "user_code" not in flow:
                return flow
            self._notify(str(flow.get("message") or "Complete the device code sign-in."))
            return self._app.acquire_token_by_device_flow(flow)
        return self._app.acquire_token_interactive(scopes=scopes, prompt="select_account")

    def _resolve_account(self, result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        claims = result.get("id_token_claims") or {}
        username = claims.get("preferred_username")
        accounts = self._app.get_accounts(username=username) if username else self._app.get_accounts()
        if accounts:
            return accounts[0]
        if username:
            return {"username": username}
        return None

    def disconnect(self) -> None:
        """Sign out and drop the cached tokens of the current session."""

        for account in self._app.get_accounts():
            self._app.remove_account(account)
        self._context = None

    def invalidate(self) -> None:
        """Mark the session unusable so the next ``ensure_connected`` reconnects."""

        if self._context is not None and self._context.valid:
            logger.warning("Marking session for %s as expired.", self._context.username)
            self._context.valid = False

    # ------------------------------------------------------------------ #
    # Tokens                                                             #
    # ------------------------------------------------------------------ #
    def access_token(self) -> str:
        context = self._context
        if context is None or not context.valid:
            raise SessionExpiredError("No active Microsoft Graph session.")
        result = None
        if context.account and context.account.get("home_account_id"):
            result = self._app.acquire_token_silent(list(self.required_scopes), account=context.account)
        if not result or "access_token" not in result:
            self.invalidate()
            raise SessionExpiredError("The Microsoft Graph session has expired.")
        return str(result["access_token"])


def connect_with_retries(
    manager: SessionManager,
    max_attempts: int,
    retry_delay: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Call ``ensure_connected`` until it succeeds or ``max_attempts`` is used up."""

    attempts = max(1, int(max_attempts))

    def log_failure(retry_state: RetryCallState) -> None:
        logger.warning("Connection attempt %s of %s failed.", retry_state.attempt_number, attempts)

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(retry_delay),
        retry=retry_if_result(lambda connected: not connected),
        before_sleep=log_failure,
        sleep=sleep,
    )
    try:
        retrying(manager.ensure_connected)
    except RetryError as exc:
        raise SessionError(
            f"Unable to connect to Microsoft Graph after {attempts} attempt(s). "
            "Check the sign-in account, granted consent and network access."
        ) from exc


__all__ = [
    "SessionContext",
    "SessionError",
    "SessionManager",
    "connect_with_retries",
    "normalize_scopes",
]
