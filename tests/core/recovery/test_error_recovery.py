"""
Tests for the Error Recovery System

Tests for error classification and retry strategies.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from sessionkeys.core.policy import DenyReason, PolicyDecision
from sessionkeys.core.recovery import (
    # Errors
    ArtifactCorrupted,
    ConfigurationError,
    NetworkError,
    NetworkTimeout,
    OperationReverted,
    PolicyDenied,
    RecoverableError,
    SignerMismatch,
    SponsorshipUnavailable,
    UnrecoverableError,
    ValidatorNotInstalled,
    VersionMismatch,
    classify_error,
    # Strategies
    ExponentialBackoffStrategy,
    RetryConfig,
    RetryStrategy,
)
from sessionkeys.core.recovery.errors import ArtifactError, ErrorCategory, ErrorContext


# =============================================================================
# Error Classification Tests
# =============================================================================

class TestErrorClassification:
    """Tests for error classification."""

    def test_recoverable_error_is_recoverable(self):
        error = RecoverableError("Test error")
        assert error.context.recoverable is True

    def test_unrecoverable_error_is_not_recoverable(self):
        error = UnrecoverableError("Test error")
        assert error.context.recoverable is False

    def test_sponsorship_unavailable(self):
        error = SponsorshipUnavailable("paymaster busy", retry_after=2.5)

        assert error.category == ErrorCategory.SPONSORSHIP
        assert error.retry_after == 2.5
        assert error.context.recoverable is True
        assert error.context.provider == "paymaster"

    def test_network_timeout_keeps_user_op_hash(self):
        error = NetworkTimeout("receipt wait timed out", operation="receipt", user_op_hash="0xop")

        assert error.category == ErrorCategory.TIMEOUT
        assert error.user_op_hash == "0xop"
        assert error.context.details == {"operation": "receipt"}

    def test_policy_denied_carries_reason(self):
        decision = PolicyDecision.deny(DenyReason.CONDITION_FAILED, "amount > 10")

        error = PolicyDenied(decision, call_index=1)

        assert error.reason == DenyReason.CONDITION_FAILED
        assert error.call_index == 1
        assert "CONDITION_FAILED" in str(error)
        assert "amount > 10" in str(error)
        assert error.context.details == {"reason": "CONDITION_FAILED", "callIndex": 1}
        assert error.context.recoverable is False

    def test_artifact_errors_share_category(self):
        errors = [
            SignerMismatch("0xaaa", "0xbbb"),
            VersionMismatch("entryPointVersion", "0.6", ["0.7"]),
            ArtifactCorrupted("digest mismatch"),
        ]

        for error in errors:
            assert isinstance(error, ArtifactError)
            assert error.category == ErrorCategory.ARTIFACT
            assert error.context.suggested_action is not None

    def test_version_mismatch_names_field(self):
        error = VersionMismatch("kernelVersion", "0.2.4", ["0.3.1"])

        assert error.field_name == "kernelVersion"
        assert error.value == "0.2.4"
        assert error.context.details["supported"] == ["0.3.1"]

    def test_validator_not_installed_is_terminal(self):
        error = ValidatorNotInstalled(account_address="0xacc", validator_ref="0xabcd")

        assert error.category == ErrorCategory.VALIDATOR
        assert error.context.recoverable is False
        assert error.context.details == {"account": "0xacc", "validator": "0xabcd"}

    def test_operation_reverted(self):
        error = OperationReverted(user_op_hash="0xop", reason="AA23", tx_hash="0xtx")

        assert error.category == ErrorCategory.TRANSACTION_REVERTED
        assert error.context.user_op_hash == "0xop"
        assert error.context.details["revert_reason"] == "AA23"

    def test_configuration_error_details(self):
        error = ConfigurationError("missing inputs", details={"missing": ["ZERODEV_RPC"]})

        assert error.category == ErrorCategory.CONFIGURATION
        assert error.context.details == {"missing": ["ZERODEV_RPC"]}

    def test_classify_returns_own_context(self):
        error = NetworkError("boom", provider="bundler")

        assert classify_error(error) is error.context

    def test_classify_rate_limit_message(self):
        context = classify_error(Exception("429 Too Many Requests"))

        assert context.category == ErrorCategory.RATE_LIMIT
        assert context.recoverable is True

    def test_classify_timeout_message(self):
        context = classify_error(Exception("request timed out"))

        assert context.category == ErrorCategory.TIMEOUT
        assert context.recoverable is True

    def test_classify_network_message(self):
        context = classify_error(Exception("Connection refused"))

        assert context.category == ErrorCategory.NETWORK

    def test_classify_revert_message(self):
        context = classify_error(Exception("AA23 reverted: signature error"))

        assert context.category == ErrorCategory.TRANSACTION_REVERTED
        assert context.recoverable is False

    def test_classify_unknown_message(self):
        context = classify_error(Exception("something odd"))

        assert context.category == ErrorCategory.UNKNOWN
        assert context.recoverable is True

    def test_error_context_defaults(self):
        context = ErrorContext()

        assert context.category == ErrorCategory.UNKNOWN
        assert context.details == {}


# =============================================================================
# Retry Config Tests
# =============================================================================

class TestRetryConfig:
    """Tests for delay calculation."""

    def test_exponential_delay(self):
        config = RetryConfig(initial_delay_seconds=1.0, exponential_base=2.0, jitter=False)

        assert config.get_delay(0) == 1.0
        assert config.get_delay(1) == 2.0
        assert config.get_delay(3) == 8.0

    def test_delay_is_capped(self):
        config = RetryConfig(initial_delay_seconds=1.0, max_delay_seconds=5.0, jitter=False)

        assert config.get_delay(10) == 5.0

    def test_jitter_stays_in_range(self):
        config = RetryConfig(initial_delay_seconds=10.0, jitter=True, jitter_factor=0.1)

        for _ in range(20):
            assert 9.0 <= config.get_delay(0) <= 11.0


# =============================================================================
# Retry Strategy Tests
# =============================================================================

def _no_delay_strategy(max_attempts: int = 3) -> RetryStrategy:
    return ExponentialBackoffStrategy(
        max_attempts=max_attempts,
        initial_delay=0,
        jitter=False,
        logger=MagicMock(),
    )


class TestRetryStrategy:
    """Tests for retry behavior."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        operation = AsyncMock(return_value="0xop")

        result = await _no_delay_strategy().execute(operation, "sponsor")

        assert result == "0xop"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_recoverable_error(self):
        operation = AsyncMock(side_effect=[SponsorshipUnavailable(retry_after=0), "sponsored"])

        result = await _no_delay_strategy().execute(operation, "sponsor")

        assert result == "sponsored"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_unrecoverable_error_not_retried(self):
        operation = AsyncMock(side_effect=ValidatorNotInstalled())

        with pytest.raises(ValidatorNotInstalled):
            await _no_delay_strategy().execute(operation, "submit")

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        operation = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await _no_delay_strategy(max_attempts=3).execute(operation, "sponsor")

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_plain_exception_uses_classification(self):
        operation = AsyncMock(side_effect=[Exception("connection reset"), "ok"])

        assert await _no_delay_strategy().execute(operation) == "ok"

        revert = AsyncMock(side_effect=Exception("execution reverted"))
        with pytest.raises(Exception, match="execution reverted"):
            await _no_delay_strategy().execute(revert)
        assert revert.await_count == 1

    def test_should_retry_stops_at_last_attempt(self):
        strategy = _no_delay_strategy(max_attempts=2)

        assert strategy.should_retry(NetworkError(), 0) is True
        assert strategy.should_retry(NetworkError(), 1) is False

    def test_category_override_delay(self):
        config = RetryConfig(
            initial_delay_seconds=1.0,
            jitter=False,
            category_overrides={
                ErrorCategory.SPONSORSHIP: RetryConfig(initial_delay_seconds=7.0, jitter=False),
            },
        )
        strategy = RetryStrategy(config)

        assert strategy._get_delay(SponsorshipUnavailable(), 0) == 7.0
        assert strategy._get_delay(NetworkError(), 0) == 1.0

    @pytest.mark.asyncio
    async def test_respect_retry_after(self):
        strategy = RetryStrategy(
            RetryConfig(max_attempts=2, initial_delay_seconds=0, jitter=False),
            respect_retry_after=True,
        )
        operation = AsyncMock(side_effect=[SponsorshipUnavailable(retry_after=3.0), "ok"])

        with patch("sessionkeys.core.recovery.strategies.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await strategy.execute(operation, "sponsor")

        assert result == "ok"
        sleep.assert_awaited_once_with(3.0)
