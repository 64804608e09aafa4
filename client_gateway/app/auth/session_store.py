"""
Session lifecycle on top of the secure key-value store.
"""

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.errors import GatewayException, StorageError
from shared.logging import get_logger, set_user_context

from ..adapters.dispatcher import RequestDispatcher
from ..storage.secure_store import SecureKeyValueStore

SESSION_KEY = "session"
USER_KEY = "user"
AUTH_ENDPOINT = "auth/"

LogoutListener = Callable[[str], Awaitable[None]]


class SessionState(Enum):
    """Session lifetime states."""
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


class SessionStore:
    """
    Holds the auth token and the cached user projection.

    The token only lives in storage and is read fresh by the dispatcher on
    every request. The user projection is mirrored in memory so the cache
    scope can be derived without I/O. Token and user are written as two
    independent calls, never as a transaction.
    """

    def __init__(self, store: SecureKeyValueStore, dispatcher: RequestDispatcher):
        self._store = store
        self._dispatcher = dispatcher
        self._user: Optional[Dict[str, Any]] = None
        self._has_token = False
        self._loaded = False
        self._logout_listeners: List[LogoutListener] = []
        self.logger = get_logger("gateway.session")

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        """Copy of the cached user projection."""
        return dict(self._user) if self._user is not None else None

    @property
    def state(self) -> SessionState:
        return SessionState.LOGGED_IN if self._has_token else SessionState.LOGGED_OUT

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def _user_id(self) -> Optional[str]:
        if not self._user:
            return None
        user_id = self._user.get("id", self._user.get("user_id"))
        return str(user_id) if user_id is not None else None

    def cache_scope(self) -> str:
        """
        Cache scope for the current account: ``user_<id>`` or ``guest``.

        Without a token every read is unauthenticated, so it is scoped to
        ``guest`` even if a user blob is still around.
        """
        user_id = self._user_id()
        if not self._has_token or user_id is None:
            return "guest"
        return f"user_{user_id}"

    def add_logout_listener(self, listener: LogoutListener) -> None:
        """Register a coroutine called with the old cache scope after logout."""
        self._logout_listeners.append(listener)

    async def load(self) -> None:
        """Restore the session from storage."""
        token = await self._store.get(SESSION_KEY)
        raw_user = await self._store.get(USER_KEY)
        self._has_token = bool(token)
        self._user = None
        if raw_user:
            try:
                user = json.loads(raw_user)
                self._user = user if isinstance(user, dict) else None
            except ValueError:
                self.logger.error("Cached user is not valid JSON; ignoring it")
        set_user_context(self._user_id())
        self._loaded = True
        self.logger.info("Session loaded", state=self.state.value)

    async def get_token(self) -> Optional[str]:
        """Read the current token from storage."""
        return await self._store.get(SESSION_KEY)

    async def log_in(self, username: str, password: str) -> Optional[str]:
        """
        Log in and persist the token and user.

        Returns:
            None on success, otherwise the server-reported error message
        """
        # Drop any previous session so neither its token nor its cached
        # responses outlive a failed login
        if self._has_token or self._user is not None:
            await self._clear_local()
        else:
            await self._store.set(SESSION_KEY, None)

        try:
            response = await self._dispatcher.post(
                AUTH_ENDPOINT + "login/",
                json={"username": username, "password": password},
                authenticate=False,
            )
        except GatewayException as e:
            self.logger.warning("Login failed", username=username, code=e.code, error=e.message)
            return e.message

        data = response.data if isinstance(response.data, dict) else {}
        token = data.get("token")
        if not token:
            self.logger.error("Login response did not include a token", status_code=response.status_code)
            return "Login response did not include a token"

        user = data.get("user")
        await self._store.set(SESSION_KEY, str(token))
        self._has_token = True
        await self._store.set(USER_KEY, json.dumps(user) if isinstance(user, dict) else None)
        self._user = user if isinstance(user, dict) else None
        set_user_context(self._user_id())

        self.logger.info("Login succeeded", username=username)
        return None

    async def log_out(self) -> Optional[str]:
        """
        Invalidate the session server-side (best effort) and always clear
        local state.

        Returns:
            None when the server acknowledged, otherwise its error message
        """
        error = None
        try:
            await self._dispatcher.post(AUTH_ENDPOINT + "logout/")
        except GatewayException as e:
            self.logger.warning("Logout call failed; clearing local session anyway", error=e.message)
            error = e.message

        await self._clear_local()
        return error

    async def delete_account(self, password: str) -> Optional[str]:
        """Delete the account; local state is cleared only on success."""
        if self._user is None:
            self.logger.error("No user is logged in")
            return "No user is logged in"

        try:
            response = await self._dispatcher.post(
                AUTH_ENDPOINT + "delete-account/",
                json={"password": password},
            )
        except GatewayException as e:
            self.logger.warning("Account deletion failed", code=e.code, error=e.message)
            return e.message

        if response.status_code not in (200, 204):
            self.logger.error("Account deletion failed", status_code=response.status_code)
            return f"Account deletion failed with status {response.status_code}"

        await self._clear_local()
        self.logger.info("Account deleted")
        return None

    async def set_user_verify(self, is_verified: bool = True) -> None:
        """Patch the cached user's verification flag without a server call."""
        if self._user is None:
            return
        user = dict(self._user)
        user["is_verified"] = is_verified
        self._user = user
        await self._store.set(USER_KEY, json.dumps(user))

    async def handle_auth_failure(self) -> None:
        """Drop the session after a caller decided the token is no longer valid."""
        self.logger.warning("Auth failure reported; clearing session")
        await self._clear_local()

    async def _clear_local(self) -> None:
        previous_scope = self.cache_scope()
        self._has_token = False
        self._user = None
        set_user_context(None)

        failures: List[StorageError] = []
        for key in (SESSION_KEY, USER_KEY):
            try:
                await self._store.set(key, None)
            except StorageError as e:
                failures.append(e)

        for listener in self._logout_listeners:
            try:
                await listener(previous_scope)
            except Exception as e:
                self.logger.error("Logout listener failed", scope=previous_scope, error=str(e))

        if failures:
            raise failures[0]
