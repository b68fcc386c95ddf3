"""Shared pytest fixtures for Yardly tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_payment_registry():
    """Fresh confirmation-session registry per test.

    The registry is a module-level singleton in the checkout routes; sessions
    left over from one test would block checkouts of the same stay in the next.
    Polling threads of leftover sessions are stopped on teardown.
    """
    import yardly.api.routes.checkout as checkout_routes
    from yardly.domain.payment_confirmation import (
        ConfirmationRegistry,
        InvalidTransitionError,
    )

    registry = ConfirmationRegistry()
    checkout_routes._registry = registry
    yield
    for session in list(registry._sessions.values()):
        try:
            session.cancel()
        except InvalidTransitionError:
            pass
    checkout_routes._registry = ConfirmationRegistry()
