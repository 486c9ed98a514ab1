"""
Submission Retry Engine - drives submission attempts for a signed transaction.

Branches on the typed failures raised by the LedgerGateway:
- conflict (inputs already spent): never retried, surfaced as RetryLater unless
  an earlier attempt of the same transaction turns out to have landed
- other rejection / network failure: retried with a fixed delay up to a ceiling
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from pycardano import Transaction

from minter.config import MinterConfig, get_config
from minter.core.attempt import AttemptState, TransactionAttempt
from minter.core.errors import FailureKind
from minter.core.results import PermanentFailure, RetryLater
from minter.node.interface import LedgerGateway, NetworkError, SubmissionRejected

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Submitted:
    """The ledger accepted the transaction."""
    transaction_id: str
    attempts: int


SubmissionOutcome = Union[Submitted, RetryLater, PermanentFailure]


class SubmissionRetryEngine:
    """
    Submits a signed transaction with bounded retries.

    An optional asyncio.Event stops further attempts. A submission already in
    flight is allowed to complete and is never repeated after cancellation.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        indexer_lag_wait_ms: Optional[int] = None,
        config: Optional[MinterConfig] = None,
    ):
        """
        Initialize the engine.

        Args:
            gateway: Ledger gateway used for submission
            max_attempts: Total submission attempts for transient failures
            retry_delay_seconds: Fixed delay between attempts
            indexer_lag_wait_ms: Wait suggested to the caller after a conflict
            config: Minter configuration supplying the defaults
        """
        self.config = config or get_config()
        self.gateway = gateway
        self.max_attempts = max_attempts if max_attempts is not None else self.config.max_attempts
        self.retry_delay_seconds = (
            retry_delay_seconds if retry_delay_seconds is not None
            else self.config.retry_delay_seconds
        )
        self.indexer_lag_wait_ms = (
            indexer_lag_wait_ms if indexer_lag_wait_ms is not None
            else self.config.indexer_lag_wait_ms
        )

    async def submit(
        self,
        tx: Transaction,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SubmissionOutcome:
        """
        Submit until a terminal outcome is reached.

        Args:
            tx: Signed transaction
            cancel_event: Set to stop further attempts

        Returns:
            Submitted, RetryLater or PermanentFailure
        """
        attempt = TransactionAttempt(tx)
        log = logger.bind(tx_hash=attempt.local_id[:16] + "...")
        # set once a submission fails without a ledger answer
        maybe_landed = False

        while True:
            if cancel_event is not None and cancel_event.is_set():
                log.info("submission_cancelled", attempts=attempt.attempts)
                return PermanentFailure(
                    FailureKind.CANCELLED,
                    self._cancel_reason(attempt),
                    attempt.attempts,
                )

            attempt.mark_submitted()
            try:
                tx_id = await self.gateway.submit(tx)
            except SubmissionRejected as e:
                if e.is_conflict:
                    if maybe_landed:
                        return await self._resolve_conflict_after_timeout(attempt, e, log)
                    attempt.mark_conflict(e.reason)
                    log.warning(
                        "submission_conflict",
                        attempt=attempt.attempts,
                        suggested_wait_ms=self.indexer_lag_wait_ms,
                    )
                    return RetryLater(
                        self.indexer_lag_wait_ms,
                        "Inputs already spent by a transaction the indexer has not caught up with",
                    )
                attempt.mark_rejected(e.reason)
                log.warning("submission_rejected", attempt=attempt.attempts, reason=e.reason)
            except NetworkError as e:
                attempt.mark_network_failure(str(e))
                maybe_landed = True
                log.warning("submission_network_failure", attempt=attempt.attempts, error=str(e))
            except asyncio.CancelledError:
                attempt.mark_unknown()
                log.error("submission_outcome_unknown", attempt=attempt.attempts)
                raise
            else:
                attempt.mark_confirmed(tx_id)
                log.info("submission_accepted", tx_id=tx_id, attempts=attempt.attempts)
                return Submitted(tx_id, attempt.attempts)

            if not attempt.can_retry(self.max_attempts):
                return self._exhausted(attempt, log)

            if await self._wait_or_cancel(cancel_event):
                log.info("submission_cancelled", attempts=attempt.attempts)
                return PermanentFailure(
                    FailureKind.CANCELLED,
                    self._cancel_reason(attempt),
                    attempt.attempts,
                )

    async def _resolve_conflict_after_timeout(
        self,
        attempt: TransactionAttempt,
        rejection: SubmissionRejected,
        log,
    ) -> SubmissionOutcome:
        """
        Decide a conflict that follows a failed submission of the same transaction.

        The earlier submission may have reached the ledger before the provider
        failed. In that case the conflict is our own transaction spending the
        inputs, and the mint succeeded.
        """
        tx_id = attempt.local_id
        try:
            landed = await self.gateway.transaction_exists(tx_id)
        except NetworkError as e:
            attempt.mark_unknown()
            log.error("submission_outcome_unknown", attempt=attempt.attempts, error=str(e))
            return PermanentFailure(
                FailureKind.NETWORK,
                f"Outcome of transaction {tx_id} is unknown: {e}",
                attempt.attempts,
            )

        if landed:
            attempt.mark_confirmed(tx_id)
            log.info("submission_landed_before_conflict", tx_id=tx_id, attempts=attempt.attempts)
            return Submitted(tx_id, attempt.attempts)

        attempt.mark_conflict(rejection.reason)
        log.warning(
            "submission_conflict",
            attempt=attempt.attempts,
            suggested_wait_ms=self.indexer_lag_wait_ms,
        )
        return RetryLater(
            self.indexer_lag_wait_ms,
            "Inputs already spent by a transaction the indexer has not caught up with",
        )

    async def _wait_or_cancel(self, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep the retry delay; True if cancelled meanwhile."""
        if cancel_event is None:
            await asyncio.sleep(self.retry_delay_seconds)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.retry_delay_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _exhausted(self, attempt: TransactionAttempt, log) -> PermanentFailure:
        kind = (
            FailureKind.NETWORK if attempt.state == AttemptState.NETWORK_FAILURE
            else FailureKind.SUBMISSION_REJECTED
        )
        log.error(
            "submission_failed",
            attempts=attempt.attempts,
            kind=kind.value,
            reason=attempt.last_reason,
        )
        return PermanentFailure(
            kind,
            f"Submission failed after {attempt.attempts} attempt(s): {attempt.last_reason}",
            attempt.attempts,
        )

    @staticmethod
    def _cancel_reason(attempt: TransactionAttempt) -> str:
        if attempt.last_reason:
            return f"Cancelled after {attempt.attempts} attempt(s): {attempt.last_reason}"
        return "Cancelled before submission"
