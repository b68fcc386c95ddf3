"""External payment confirmation (PIX / boleto) state machine.

    IDLE -> CHARGE_CREATING -> AWAITING_PAYMENT -> CONFIRMED -> COMMITTING -> DONE
    CHARGE_CREATING -> FAILED            (gateway error, operator may retry)
    AWAITING_PAYMENT -> IDLE             (operator cancels)
    COMMITTING -> CONFIRMED              (commit failed, operator retries commit)

Guarantees:
- Every transition happens under the session lock.
- The polling task is stopped before the CONFIRMED transition is published,
  and a status response that arrives once the session has left
  AWAITING_PAYMENT is ignored: at most one CONFIRMED and one commit per
  charge.
- A commit failure never re-polls nor re-charges.
- A cancelled charge is left open at the gateway and never reused.
- There is no timeout: the operator cancels stalled attempts.
"""

from __future__ import annotations

import os
import threading
import time
import uuid
from collections import OrderedDict
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from yardly.asaas.client import AsaasClient, GatewayError
from yardly.asaas.models import BillingType, ChargeStatus, ExternalCharge
from yardly.domain.checkout import (
    CheckoutResult,
    CheckoutValidationError,
    CommitError,
    Stay,
    commit_checkout,
    is_automated_method,
)
from yardly.observability.correlation import correlation_scope, get_correlation_id
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

logger = get_logger(__name__)

POLL_INTERVAL = float(os.environ.get("CHECKOUT_POLL_INTERVAL", "10"))
CONFIRM_DELAY = float(os.environ.get("CHECKOUT_CONFIRM_DELAY", "3"))
FINISHED_SNAPSHOTS = int(os.environ.get("CHECKOUT_FINISHED_SNAPSHOTS", "200"))

Finalizer = Callable[..., CheckoutResult]


class ConfirmationState(str, Enum):
    IDLE = "idle"
    CHARGE_CREATING = "charge_creating"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Operation not allowed in the session's current state."""

    def __init__(self, operation: str, state: ConfirmationState):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while payment is {state.value}")


def charge_description(stay: Stay) -> str:
    return f"Diárias de pátio - Veículo Placa {stay.plate or 'N/A'}"


class PaymentConfirmation:
    """One automated-payment attempt for one open stay.

    Usage:
        session = PaymentConfirmation(
            stay=stay, amount_due=quote.amount_due, payment_method="pix",
            gateway=AsaasClient(get_asaas_config()),
        )
        charge = session.start()       # creates the charge, starts polling
        session.artifact()             # QR code / slip shown to the payer
        ...                            # polling confirms and commits
        session.commit()               # only to retry after a CommitError
    """

    def __init__(
        self,
        *,
        stay: Stay,
        amount_due: Decimal,
        payment_method: str,
        gateway: AsaasClient,
        finalizer: Finalizer = commit_checkout,
        poll_interval: float = POLL_INTERVAL,
        confirm_delay: float = CONFIRM_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        session_id: str | None = None,
    ) -> None:
        """Create an idle session.

        Raises:
            CheckoutValidationError: Method is not automated or amount <= 0.
        """
        if not is_automated_method(payment_method):
            raise CheckoutValidationError(
                f"Payment method '{payment_method}' is not settled through the gateway"
            )
        if amount_due is None or amount_due <= 0:
            raise CheckoutValidationError("Amount due must be greater than zero")

        self.id = session_id or str(uuid.uuid4())
        self.stay = stay
        self.amount_due = amount_due
        self.payment_method = payment_method.strip()
        self.billing_type = BillingType.from_method_name(payment_method)
        self.poll_interval = poll_interval
        self.confirm_delay = confirm_delay

        self._gateway = gateway
        self._finalizer = finalizer
        self._sleep = sleep

        self._lock = threading.Lock()
        self._state = ConfirmationState.IDLE
        self._attempt = 1
        self._charge: ExternalCharge | None = None
        self._last_status: ChargeStatus | None = None
        self._checks_in_flight = 0
        self._error: str | None = None
        self._result: CheckoutResult | None = None
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None
        # Called once the checkout is committed (set by ConfirmationRegistry)
        self.on_done: Callable[[PaymentConfirmation], None] | None = None

    # ── Read-only views ──────────────────────────────────

    @property
    def state(self) -> ConfirmationState:
        return self._state

    @property
    def charge(self) -> ExternalCharge | None:
        return self._charge

    @property
    def checking(self) -> bool:
        return self._checks_in_flight > 0

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def result(self) -> CheckoutResult | None:
        return self._result

    @property
    def external_reference(self) -> str:
        return f"stay:{self.stay.id}:{self.id}:{self._attempt}"

    def artifact(self) -> dict[str, Any] | None:
        charge = self._charge
        return charge.artifact() if charge else None

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            charge = self._charge
            return {
                "id": self.id,
                "state": self._state.value,
                "checking": self._checks_in_flight > 0,
                "stay_id": self.stay.id,
                "amount_due": str(self.amount_due),
                "payment_method": self.payment_method,
                "charge_id": charge.id if charge else None,
                "charge_status": self._last_status.value if self._last_status else None,
                "artifact": charge.artifact() if charge else None,
                "error": self._error,
                "ledger_entry_id": (
                    self._result.ledger_entry["id"] if self._result else None
                ),
            }

    # ── Transitions ──────────────────────────────────────

    def start(self, *, background: bool = True) -> ExternalCharge:
        """IDLE/FAILED -> CHARGE_CREATING -> AWAITING_PAYMENT (or FAILED).

        Registers the payer, creates the charge (reusing one already created
        under this attempt's external reference) and, for PIX, fetches the QR
        code. Starts the polling task unless background is False.

        Raises:
            InvalidTransitionError: Session is not idle/failed.
            GatewayError: Charge could not be created (session is FAILED).
        """
        with self._lock:
            if self._state not in (ConfirmationState.IDLE, ConfirmationState.FAILED):
                raise InvalidTransitionError("start a charge", self._state)
            self._state = ConfirmationState.CHARGE_CREATING
            self._error = None
            self._charge = None
            self._last_status = None
            reference = self.external_reference

        try:
            charge = self._create_charge(reference)
        except GatewayError as exc:
            with self._lock:
                self._state = ConfirmationState.FAILED
                self._error = str(exc)
            logger.warning(
                "payment charge creation failed",
                extra={
                    "extra_fields": safe_log_context(
                        session_id=self.id,
                        stay_id=self.stay.id,
                        billing_type=self.billing_type.value,
                        status_code=exc.status_code,
                    )
                },
            )
            raise

        with self._lock:
            self._charge = charge
            self._last_status = charge.status
            self._stop = threading.Event()
            self._state = ConfirmationState.AWAITING_PAYMENT
            stop = self._stop

        logger.info(
            "payment awaiting confirmation",
            extra={
                "extra_fields": safe_log_context(
                    session_id=self.id,
                    stay_id=self.stay.id,
                    charge_id=charge.id,
                    billing_type=self.billing_type.value,
                )
            },
        )

        if background:
            self._poller = threading.Thread(
                target=self._run_task,
                args=(stop, get_correlation_id()),
                name=f"payment-confirmation-{self.id}",
                daemon=True,
            )
            self._poller.start()

        return charge

    def _create_charge(self, reference: str) -> ExternalCharge:
        stay = self.stay
        customer_id = self._gateway.get_or_create_customer(
            stay.owner_name or "", stay.owner_tax_id, stay.owner_phone
        )

        # A retried start after a lost response must not charge twice
        charge = self._gateway.find_charge_by_reference(reference)
        if charge is None:
            charge = self._gateway.create_charge(
                customer_id=customer_id,
                amount=self.amount_due,
                billing_type=self.billing_type,
                description=charge_description(stay),
                external_reference=reference,
            )

        if self.billing_type is BillingType.PIX:
            charge = charge.with_qr_code(self._gateway.get_pix_qr_code(charge.id))
        return charge

    def poll_once(self) -> bool:
        """Query the charge status once.

        Returns True only for the call that moved the session to CONFIRMED.
        Gateway errors are logged and ignored (polling goes on).
        """
        with self._lock:
            if self._state is not ConfirmationState.AWAITING_PAYMENT or self._charge is None:
                return False
            charge_id = self._charge.id
            self._checks_in_flight += 1

        try:
            status = self._gateway.get_charge_status(charge_id)
        except GatewayError as exc:
            logger.warning(
                "payment status check failed",
                extra={
                    "extra_fields": safe_log_context(
                        session_id=self.id,
                        charge_id=charge_id,
                        status_code=exc.status_code,
                    )
                },
            )
            return False
        finally:
            with self._lock:
                self._checks_in_flight -= 1

        with self._lock:
            # Late response: cancelled, already confirmed or a newer charge
            if (
                self._state is not ConfirmationState.AWAITING_PAYMENT
                or self._charge is None
                or self._charge.id != charge_id
            ):
                return False
            self._last_status = status
            if not status.is_paid:
                return False
            self._stop.set()
            self._state = ConfirmationState.CONFIRMED

        logger.info(
            "payment confirmed",
            extra={
                "extra_fields": safe_log_context(
                    session_id=self.id,
                    charge_id=charge_id,
                    charge_status=status.value,
                )
            },
        )
        return True

    def commit(self) -> CheckoutResult:
        """CONFIRMED -> COMMITTING -> DONE, back to CONFIRMED on failure.

        Raises:
            InvalidTransitionError: Session is not CONFIRMED.
            CommitError: The checkout write failed; retry later.
        """
        with self._lock:
            if self._state is not ConfirmationState.CONFIRMED:
                raise InvalidTransitionError("commit the checkout", self._state)
            self._state = ConfirmationState.COMMITTING
            self._error = None
            charge_id = self._charge.id if self._charge else None

        try:
            result = self._finalizer(
                self.stay,
                self.amount_due,
                self.payment_method,
                gateway_charge_id=charge_id,
            )
        except (CommitError, CheckoutValidationError) as exc:
            with self._lock:
                self._state = ConfirmationState.CONFIRMED
                self._error = str(exc)
            logger.error(
                "payment confirmed but checkout not committed",
                extra={
                    "extra_fields": safe_log_context(
                        session_id=self.id,
                        stay_id=self.stay.id,
                        charge_id=charge_id,
                        error=type(exc).__name__,
                    )
                },
            )
            raise

        with self._lock:
            self._result = result
            self._state = ConfirmationState.DONE
            on_done = self.on_done
        if on_done is not None:
            on_done(self)
        return result

    def cancel(self) -> None:
        """AWAITING_PAYMENT -> IDLE. Stops polling; the charge stays open.

        Raises:
            InvalidTransitionError: Payment already confirmed or committed.
        """
        with self._lock:
            if self._state not in (
                ConfirmationState.AWAITING_PAYMENT,
                ConfirmationState.IDLE,
                ConfirmationState.FAILED,
            ):
                raise InvalidTransitionError("cancel", self._state)
            self._stop.set()
            charge_id = self._charge.id if self._charge else None
            if charge_id:
                self._attempt += 1
            self._charge = None
            self._last_status = None
            self._error = None
            self._state = ConfirmationState.IDLE

        logger.info(
            "payment attempt cancelled",
            extra={
                "extra_fields": safe_log_context(session_id=self.id, charge_id=charge_id)
            },
        )

    # ── Polling task ─────────────────────────────────────

    def run(self) -> None:
        """Poll until confirmed (then commit) or cancelled. Blocking."""
        self._run(self._stop)

    def _run_task(self, stop: threading.Event, cid: str) -> None:
        with correlation_scope(cid):
            self._run(stop)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.poll_interval):
            if self.poll_once():
                break

        if self._state is not ConfirmationState.CONFIRMED:
            return

        # Let the operator see the confirmation before the screen closes
        self._sleep(self.confirm_delay)
        try:
            self.commit()
        except (CommitError, CheckoutValidationError):
            # Kept in self.error; the operator retries through commit()
            return
        except InvalidTransitionError:
            # Operator already committed manually during the delay
            return

    def join(self, timeout: float | None = None) -> None:
        if self._poller is not None:
            self._poller.join(timeout)


class ConfirmationRegistry:
    """In-process registry of live confirmation sessions.

    A session is dropped as soon as its checkout is committed. Only its final
    snapshot is kept (the latest FINISHED_SNAPSHOTS) so a dashboard still
    polling it sees the outcome.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PaymentConfirmation] = {}
        self._finished: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def live_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def add(self, session: PaymentConfirmation) -> None:
        """Register a session.

        Raises:
            InvalidTransitionError: Another live session exists for the stay.
        """
        with self._lock:
            existing = self._active_for_stay(session.stay.id)
            if existing is not None and existing.id != session.id:
                raise InvalidTransitionError("open a second checkout", existing.state)
            self._sessions[session.id] = session
            session.on_done = self._forget

        # Committed before on_done was attached
        if session.state is ConfirmationState.DONE:
            self._forget(session)

    def get(self, session_id: str) -> PaymentConfirmation | None:
        with self._lock:
            return self._sessions.get(session_id)

    def snapshot(self, session_id: str) -> dict[str, Any] | None:
        """State of a live session, or the final state of a committed one."""
        session = self.get(session_id)
        if session is not None:
            return session.to_dict()
        with self._lock:
            return self._finished.get(session_id)

    def discard(self, session_id: str) -> None:
        """Cancel and forget a session.

        Raises:
            InvalidTransitionError: The session holds a confirmed payment
                that is not committed yet (it stays registered).
        """
        session = self.get(session_id)
        if session is None:
            return
        if session.state is not ConfirmationState.DONE:
            session.cancel()
        with self._lock:
            self._sessions.pop(session_id, None)

    def active_for_stay(self, stay_id: str) -> PaymentConfirmation | None:
        with self._lock:
            return self._active_for_stay(stay_id)

    def _active_for_stay(self, stay_id: str) -> PaymentConfirmation | None:
        for session in self._sessions.values():
            if session.stay.id == stay_id and session.state is not ConfirmationState.DONE:
                return session
        return None

    def _forget(self, session: PaymentConfirmation) -> None:
        final = session.to_dict()
        with self._lock:
            self._sessions.pop(session.id, None)
            self._finished[session.id] = final
            while len(self._finished) > FINISHED_SNAPSHOTS:
                self._finished.popitem(last=False)
