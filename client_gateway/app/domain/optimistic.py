"""
Optimistic updates with deterministic rollback.
"""

from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar

from shared.errors import GatewayException
from shared.logging import get_logger
from shared.metrics import GatewayMetrics

T = TypeVar("T")
S = TypeVar("S")

Notifier = Callable[[str, str], None]


class VersionedState(Generic[S]):
    """
    A value with a monotonically increasing version.

    Every ``set`` bumps the version, so a rollback can tell whether another
    mutation landed after the one it is undoing.
    """

    def __init__(self, value: S):
        self._value = value
        self._version = 0

    @property
    def value(self) -> S:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def set(self, value: S) -> int:
        self._value = value
        self._version += 1
        return self._version

    def restore_if(self, version: int, value: S) -> bool:
        """Restore ``value`` only if the state still carries ``version``."""
        if self._version != version:
            return False
        self.set(value)
        return True


class OptimisticUpdater:
    """
    Applies a local mutation before the network call and reverts it if the
    call fails.

    The notifier receives ``(level, message)`` pairs for user-facing
    success and error reports; by default they are only logged.
    """

    def __init__(self, notifier: Optional[Notifier] = None, metrics: Optional[GatewayMetrics] = None):
        self.logger = get_logger("gateway.optimistic")
        self.notifier = notifier or self._log_notification
        self.metrics = metrics

    def _log_notification(self, level: str, message: str) -> None:
        if level == "error":
            self.logger.warning("Optimistic update failed", message=message)
        else:
            self.logger.info("Optimistic update confirmed", message=message)

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, GatewayException):
            return error.message
        return str(error) or "Unknown error"

    async def run(
        self,
        update_ui: Callable[[], None],
        api_call: Callable[[], Awaitable[T]],
        rollback_ui: Callable[[], Optional[bool]],
        *,
        success_message: Optional[str] = None,
        error_message_prefix: str = "Operation failed: ",
        raise_on_error: bool = False,
    ) -> Optional[T]:
        """
        Run one optimistic mutation.

        Returns:
            The api_call result, or None after a rollback (unless
            ``raise_on_error`` is set, in which case the error is re-raised)
        """
        update_ui()

        try:
            result = await api_call()
        except Exception as e:
            # a rollback returning False reports it was skipped
            outcome = "skipped" if rollback_ui() is False else "applied"
            if self.metrics:
                self.metrics.record_rollback(outcome)
            self.notifier("error", f"{error_message_prefix}{self._error_message(e)}")
            if raise_on_error:
                raise
            return None

        if success_message:
            self.notifier("success", success_message)
        return result

    async def run_versioned(
        self,
        state: VersionedState[S],
        new_value: S,
        api_call: Callable[[], Awaitable[T]],
        **kwargs: Any,
    ) -> Tuple[Optional[T], bool]:
        """
        Optimistically set ``state`` to ``new_value``.

        On failure the previous value is restored only if no other mutation
        changed the state in the meantime.

        Returns:
            (result, rolled_back) where ``rolled_back`` is False when the
            call succeeded or a newer mutation won
        """
        previous = state.value
        applied = {"version": None, "rolled_back": False}

        def update_ui():
            applied["version"] = state.set(new_value)

        def rollback_ui() -> bool:
            if applied["rolled_back"]:
                return True
            applied["rolled_back"] = state.restore_if(applied["version"], previous)
            if not applied["rolled_back"]:
                self.logger.info(
                    "Rollback skipped; state changed by a newer mutation",
                    applied_version=applied["version"],
                    current_version=state.version
                )
            return applied["rolled_back"]

        result = await self.run(update_ui, api_call, rollback_ui, **kwargs)
        return result, applied["rolled_back"]


_default_updater = OptimisticUpdater()


async def perform_optimistic_update(update_ui: Callable[[], None],
                                    api_call: Callable[[], Awaitable[T]],
                                    rollback_ui: Callable[[], Optional[bool]],
                                    **kwargs: Any) -> Optional[T]:
    """Run an optimistic mutation with the default, log-only notifier."""
    return await _default_updater.run(update_ui, api_call, rollback_ui, **kwargs)
