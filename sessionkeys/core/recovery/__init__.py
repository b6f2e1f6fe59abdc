"""
Error Recovery Module

Error taxonomy for session key management and retry strategies for
transient failures (sponsorship, network, timeouts).
"""

from .errors import (
    ArtifactCorrupted,
    ArtifactError,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    InvalidTransitionError,
    NetworkError,
    NetworkTimeout,
    OperationReverted,
    PolicyDenied,
    ProviderError,
    RecoverableError,
    SignerMismatch,
    SignerUnavailable,
    SponsorshipUnavailable,
    UnrecoverableError,
    ValidatorAlreadyInstalled,
    ValidatorNotInstalled,
    VersionMismatch,
    classify_error,
)
from .strategies import ExponentialBackoffStrategy, RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "RecoverableError",
    "UnrecoverableError",
    "ConfigurationError",
    "PolicyDenied",
    "ArtifactError",
    "ArtifactCorrupted",
    "SignerMismatch",
    "VersionMismatch",
    "ValidatorNotInstalled",
    "ValidatorAlreadyInstalled",
    "SignerUnavailable",
    "InvalidTransitionError",
    "ProviderError",
    "OperationReverted",
    "SponsorshipUnavailable",
    "NetworkError",
    "NetworkTimeout",
    "classify_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    "ExponentialBackoffStrategy",
]
