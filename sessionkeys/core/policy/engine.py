"""
Policy Engine

Evaluates proposed calls against the policies attached to a validator.
Pure and stateless: no I/O, safe to call from any thread.
"""

import time
from typing import Callable, Optional, Sequence, Tuple

from .models import Call, DenyReason, Policy, PolicyDecision


def evaluate(policy: Policy, call: Call) -> PolicyDecision:
    """Evaluate a single call against a single policy."""
    return policy.evaluate(call)


def evaluate_policies(policies: Sequence[Policy], call: Call) -> PolicyDecision:
    """
    Allow if any policy allows the call.

    An empty policy set denies everything. When every policy denies, the
    most specific denial wins: a denial from a policy that matched the call
    is preferred over NO_MATCHING_PERMISSION.
    """
    if not policies:
        return PolicyDecision.deny(DenyReason.EMPTY_POLICY, "no policies attached")

    denials = []
    for policy in policies:
        decision = policy.evaluate(call)
        if decision.allowed:
            return decision
        denials.append(decision)

    for decision in denials:
        if decision.reason not in (DenyReason.NO_MATCHING_PERMISSION, DenyReason.EMPTY_POLICY):
            return decision
    return denials[0]


class PolicyEngine:
    """
    Policy evaluation for one validator.

    Combines the attached policies (OR) with the optional validity window
    (``valid_after`` / ``valid_until``, unix seconds) of the session.
    """

    def __init__(
        self,
        policies: Sequence[Policy],
        valid_after: Optional[int] = None,
        valid_until: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.policies = tuple(policies)
        self.valid_after = valid_after
        self.valid_until = valid_until
        self._clock = clock or time.time

    def check_window(self, now: Optional[float] = None) -> Optional[PolicyDecision]:
        """Return a denial if ``now`` is outside the validity window."""
        now = self._clock() if now is None else now
        if self.valid_after and now < self.valid_after:
            return PolicyDecision.deny(
                DenyReason.SESSION_NOT_YET_VALID,
                f"session valid after {self.valid_after}",
            )
        if self.valid_until and now > self.valid_until:
            return PolicyDecision.deny(
                DenyReason.SESSION_EXPIRED,
                f"session expired at {self.valid_until}",
            )
        return None

    def evaluate(self, call: Call, now: Optional[float] = None) -> PolicyDecision:
        window_denial = self.check_window(now)
        if window_denial is not None:
            return window_denial
        return evaluate_policies(self.policies, call)

    def evaluate_batch(
        self,
        calls: Sequence[Call],
        now: Optional[float] = None,
    ) -> Tuple[PolicyDecision, Optional[int]]:
        """
        Evaluate every call; stop at the first denial.

        Returns the decision and the index of the denied call (None if all
        calls are allowed).
        """
        now = self._clock() if now is None else now
        for i, call in enumerate(calls):
            decision = self.evaluate(call, now=now)
            if not decision.allowed:
                return decision, i
        return PolicyDecision.allow(), None
