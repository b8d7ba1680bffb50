"""Exception types for the billing subsystem.

Three classes of failure, handled at different levels:

  Configuration errors (PaymentConfigurationError)
    Provider credentials are missing.  Nothing can be charged, so the
    whole renewal pass aborts and operators are alerted.

  Candidate query errors (RenewalPassError)
    The pass cannot even find out what is due.  Also fatal for the pass.

  Per-item errors
    A charge declines, the provider times out, a plan or billing
    credential is missing.  These are recorded against the single
    subscription and never escape the pass; they have no exception type
    of their own outside the engine.

InvalidTransitionError and SubscriptionNotFoundError are raised by the
state machine and the subscription service for requests that make no
sense for the subscription's current state.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for billing errors."""


class PaymentConfigurationError(BillingError):
    """The payment provider is not configured (e.g. no secret key)."""


class RenewalPassError(BillingError):
    """A renewal pass could not run at all."""


class InvalidTransitionError(BillingError):
    """The requested event is not valid for the subscription's status."""

    def __init__(self, status: str, event: str) -> None:
        super().__init__(f"cannot apply {event!r} to a {status!r} subscription")
        self.status = status
        self.event = event


class SubscriptionNotFoundError(BillingError):
    """No subscription in a live status for the organization."""
