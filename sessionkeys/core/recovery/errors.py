"""
Error Classification

Defines error types for session key management and execution.
Errors are classified as recoverable (can retry) or unrecoverable (needs a
new artifact, a new configuration, or a human).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..policy.models import PolicyDecision


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    CONFIGURATION = "configuration"   # Missing/malformed configuration
    POLICY = "policy"                 # Call denied by a local policy
    ARTIFACT = "artifact"             # Approval artifact cannot be used
    VALIDATOR = "validator"           # Validator missing or already installed
    STATE = "state"                   # Invalid session lifecycle transition
    SPONSORSHIP = "sponsorship"       # Paymaster refused or unreachable
    NETWORK = "network"               # Network/connectivity issues
    TIMEOUT = "timeout"               # Operation timed out
    RATE_LIMIT = "rate_limit"         # API rate limits
    TRANSACTION_REVERTED = "transaction_reverted"  # On-chain revert
    PROVIDER = "provider"             # External provider error
    AUTHENTICATION = "authentication"  # Signer cannot sign
    UNKNOWN = "unknown"               # Unclassified error


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    user_op_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These errors are typically transient:
    - Network issues
    - Timeouts
    - Temporarily rate-limited sponsorship
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that cannot be retried.

    These errors require a change before trying again:
    - Invalid configuration
    - Policy denials
    - Unusable approval artifacts
    - Revoked validators
    - On-chain reverts
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


# Local, synchronous errors
class ConfigurationError(UnrecoverableError):
    """Missing endpoint/key/target or a malformed policy definition."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            context=ErrorContext(
                category=ErrorCategory.CONFIGURATION,
                recoverable=False,
                suggested_action="Fix the configuration and restart",
                details=details or {},
            ),
        )


class PolicyDenied(UnrecoverableError):
    """A call was rejected by the session validator's policies."""

    def __init__(
        self,
        decision: "PolicyDecision",
        call_index: Optional[int] = None,
    ):
        reason = decision.reason.value if decision.reason else "denied"
        message = f"Call denied by policy: {reason}"
        if decision.message:
            message = f"{message} ({decision.message})"
        super().__init__(
            message,
            category=ErrorCategory.POLICY,
            context=ErrorContext(
                category=ErrorCategory.POLICY,
                recoverable=False,
                suggested_action="Adjust the call or request a broader session",
                details={"reason": reason, "callIndex": call_index},
            ),
        )
        self.decision = decision
        self.call_index = call_index

    @property
    def reason(self):
        return self.decision.reason


class ArtifactError(UnrecoverableError):
    """Base class for approval artifact reconstruction errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.ARTIFACT,
            context=ErrorContext(
                category=ErrorCategory.ARTIFACT,
                recoverable=False,
                suggested_action="Request a new approval artifact from the owner",
                details=details or {},
            ),
        )


class SignerMismatch(ArtifactError):
    """Runtime signer does not match the session identity in the artifact."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Signer {actual} does not match session signer {expected}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class VersionMismatch(ArtifactError):
    """Artifact format, entry point or implementation version is unsupported."""

    def __init__(self, field_name: str, value: Any, supported: Any = None):
        super().__init__(
            f"Unsupported {field_name}: {value!r}",
            details={"field": field_name, "value": value, "supported": supported},
        )
        self.field_name = field_name
        self.value = value


class ArtifactCorrupted(ArtifactError):
    """Artifact could not be decoded or its digest does not match."""
    pass


class ValidatorNotInstalled(UnrecoverableError):
    """
    The validator is not (or no longer) installed on the account.

    This is the expected state after revocation and must not be retried.
    """

    def __init__(
        self,
        message: str = "Validator is not installed",
        account_address: Optional[str] = None,
        validator_ref: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATOR,
            context=ErrorContext(
                category=ErrorCategory.VALIDATOR,
                recoverable=False,
                suggested_action="Session was revoked or never installed; request a new session",
                details={"account": account_address, "validator": validator_ref},
            ),
        )
        self.account_address = account_address
        self.validator_ref = validator_ref


class ValidatorAlreadyInstalled(UnrecoverableError):
    """A regular validator is already active on the account."""

    def __init__(self, account_address: str, validator_ref: str):
        super().__init__(
            f"Account {account_address} already has regular validator {validator_ref}",
            category=ErrorCategory.VALIDATOR,
            context=ErrorContext(
                category=ErrorCategory.VALIDATOR,
                recoverable=False,
                suggested_action="Revoke the active session first",
                details={"account": account_address, "validator": validator_ref},
            ),
        )


class SignerUnavailable(UnrecoverableError):
    """Signer only knows a public identity and cannot produce signatures."""

    def __init__(self, address: str):
        super().__init__(
            f"Signer {address} has no signing capability",
            category=ErrorCategory.AUTHENTICATION,
        )


class InvalidTransitionError(UnrecoverableError):
    """Session lifecycle transition is not allowed."""

    def __init__(self, from_state: Any, to_state: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid transition from {from_state} to {to_state}",
            category=ErrorCategory.STATE,
        )
        self.from_state = from_state
        self.to_state = to_state


class ProviderError(UnrecoverableError):
    """External service returned an error object."""

    def __init__(self, message: str, provider: Optional[str] = None, error: Any = None):
        super().__init__(
            message,
            category=ErrorCategory.PROVIDER,
            context=ErrorContext(
                category=ErrorCategory.PROVIDER,
                recoverable=False,
                provider=provider,
                details={"error": error} if error is not None else {},
            ),
        )
        self.provider = provider
        self.error = error


class OperationReverted(UnrecoverableError):
    """Operation was included but the ledger rejected it. Fatal for the Operation only."""

    def __init__(
        self,
        message: str = "Operation reverted",
        user_op_hash: Optional[str] = None,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION_REVERTED,
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                user_op_hash=user_op_hash,
                suggested_action="Review call parameters",
                details={"revert_reason": reason, "tx_hash": tx_hash},
            ),
        )
        self.user_op_hash = user_op_hash
        self.reason = reason
        self.tx_hash = tx_hash


# Retryable errors
class SponsorshipUnavailable(RecoverableError):
    """
    Paymaster refused or failed to sponsor the operation.

    Recoverable: sponsorship may be transiently rate-limited.
    """

    def __init__(
        self,
        message: str = "Sponsorship unavailable",
        retry_after: float = 5.0,
        provider: Optional[str] = "paymaster",
    ):
        super().__init__(
            message,
            category=ErrorCategory.SPONSORSHIP,
            retry_after=retry_after,
            context=ErrorContext(
                category=ErrorCategory.SPONSORSHIP,
                recoverable=True,
                retry_after_seconds=retry_after,
                provider=provider,
                suggested_action="Retry with backoff",
            ),
        )


class NetworkError(RecoverableError):
    """Network connectivity error."""

    def __init__(
        self,
        message: str = "Network error",
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            retry_after=5.0,
            context=ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                retry_after_seconds=5.0,
                provider=provider,
                suggested_action="Retry with exponential backoff",
            ),
        )


class NetworkTimeout(RecoverableError):
    """Request or receipt wait timed out. Retryable up to a caller-defined bound."""

    def __init__(
        self,
        message: str = "Operation timed out",
        operation: Optional[str] = None,
        user_op_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            retry_after=10.0,
            context=ErrorContext(
                category=ErrorCategory.TIMEOUT,
                recoverable=True,
                retry_after_seconds=10.0,
                user_op_hash=user_op_hash,
                suggested_action="Retry with longer timeout",
                details={"operation": operation} if operation else {},
            ),
        )
        self.user_op_hash = user_op_hash


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Already-classified errors return their own context; anything else is
    matched on its message.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    message = str(error).lower()

    rate_limit_patterns = [
        "rate limit",
        "too many requests",
        "429",
        "throttl",
        "quota exceeded",
    ]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(
            category=ErrorCategory.RATE_LIMIT,
            recoverable=True,
            retry_after_seconds=60.0,
            suggested_action="Wait before retrying",
        )

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            retry_after_seconds=10.0,
            suggested_action="Retry with longer timeout",
        )

    network_patterns = [
        "connection",
        "network",
        "unreachable",
        "refused",
        "dns",
        "socket",
    ]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            retry_after_seconds=5.0,
            suggested_action="Check network connectivity",
        )

    revert_patterns = [
        "revert",
        "execution reverted",
        "aa23",
        "aa24",
        "out of gas",
    ]
    if any(p in message for p in revert_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            suggested_action="Review call parameters",
        )

    # Default to unknown but recoverable (safer to retry)
    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=True,
        suggested_action="Retry operation",
    )
