"""
Circuit breakers for catalog introspection.

Reading the catalog is the only network-bound step of planning. Each
database gets its own `pybreaker` breaker so a catalog that keeps failing
is skipped (the cache falls back to ORM metadata or its stale schema)
without tripping introspection for healthy databases in the same process.
"""
import threading
from typing import Dict, List, Optional, Type

import pybreaker

from querypilot.common.logger import get_logger
from querypilot.common.settings import settings

logger = get_logger("resilience")


class IntrospectionBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs breaker transitions and counted catalog failures."""

    def state_change(self, cb, old_state, new_state):
        if new_state.name == pybreaker.STATE_OPEN:
            logger.error(
                f"Catalog introspection for '{cb.name}' disabled for {cb.reset_timeout}s "
                f"after {cb.fail_counter} consecutive failures; serving fallback schema.",
                extra={"breaker": cb.name},
            )
        else:
            logger.warning(
                f"Breaker '{cb.name}' changed state: {old_state.name} -> {new_state.name}",
                extra={"breaker": cb.name},
            )

    def failure(self, cb, exc):
        logger.warning(
            f"Catalog introspection for '{cb.name}' failed "
            f"({cb.fail_counter}/{cb.fail_max}): {type(exc).__name__}",
            extra={"breaker": cb.name},
        )


def create_breaker(
    name: str,
    fail_max: Optional[int] = None,
    reset_timeout: Optional[int] = None,
    exclude: Optional[List[Type[Exception]]] = None,
) -> pybreaker.CircuitBreaker:
    """Builds a breaker with the introspection defaults from settings."""
    return pybreaker.CircuitBreaker(
        fail_max=settings.introspection_breaker_fail_max if fail_max is None else fail_max,
        reset_timeout=settings.introspection_breaker_reset_sec if reset_timeout is None else reset_timeout,
        name=name,
        listeners=[IntrospectionBreakerListener()],
        exclude=exclude or [],
    )


_breakers: Dict[str, pybreaker.CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def introspection_breaker(key: str) -> pybreaker.CircuitBreaker:
    """Returns the shared breaker for one database, creating it on first use.

    Args:
        key: Identifies the database, e.g. its URL without credentials.
    """
    with _breakers_lock:
        breaker = _breakers.get(key)
        if breaker is None:
            breaker = _breakers[key] = create_breaker(name=key)
        return breaker


def reset_breakers() -> None:
    """Forgets every registered breaker."""
    with _breakers_lock:
        _breakers.clear()
