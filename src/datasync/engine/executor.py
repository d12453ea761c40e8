"""
Transfer executor: applies a single decision to the destination.
"""

import errno
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import backoff

from ..connectors.base import BaseConnector
from ..exceptions import TransferError, TransientTransferError, VerificationError
from ..models.config import SyncConfig
from ..models.sync import Decision, DecisionAction, Fingerprint, Outcome, OutcomeStatus

logger = logging.getLogger(__name__)

TRANSIENT_ERRNOS = (errno.EAGAIN, errno.EBUSY, errno.ETIMEDOUT, errno.ECONNRESET, errno.ECONNREFUSED)


def classify_transfer_error(exception: Exception, key: str = "") -> TransferError:
    """Classify an exception raised by a connector into a TransferError.

    Timeouts, connection problems and "try again" errnos are transient;
    everything else, including permission errors, is permanent.

    Args:
        exception: The exception to classify.
        key: Item key the exception relates to.

    Returns:
        The exception itself if it already is a TransferError, otherwise a
        new TransferError or TransientTransferError describing it.
    """
    if isinstance(exception, TransferError):
        return exception

    if isinstance(exception, PermissionError):
        return TransferError(f"permission-denied: {exception}", key=key)

    if isinstance(exception, (TimeoutError, ConnectionError)):
        return TransientTransferError(f"{type(exception).__name__}: {exception}", key=key)

    if isinstance(exception, OSError):
        if exception.errno in (errno.EACCES, errno.EPERM):
            return TransferError(f"permission-denied: {exception}", key=key)
        if exception.errno in TRANSIENT_ERRNOS:
            return TransientTransferError(f"{type(exception).__name__}: {exception}", key=key)

    return TransferError(f"{type(exception).__name__}: {exception}", key=key)


class TransferExecutor:
    """
    Performs decisions against the side being written.

    ``reader`` is the authoritative connector payloads are read from and
    ``writer`` the connector that is changed. Per-item errors never escape
    ``execute``; they become Failed outcomes.
    """

    def __init__(self, reader: BaseConnector, writer: BaseConnector, config: SyncConfig):
        self.reader = reader
        self.writer = writer
        self.config = config
        self.retry = config.retry

    def execute(self, decision: Decision) -> Outcome:
        """
        Apply one decision and report what happened.

        Args:
            decision: Decision from the comparator

        Returns:
            Outcome for the decision's key
        """
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        def outcome(status: OutcomeStatus, reason: Optional[str] = None,
                    bytes_transferred: int = 0, attempts: int = 0) -> Outcome:
            return Outcome(
                key=decision.key,
                action=decision.action,
                status=status,
                reason=reason,
                started_at=started_at,
                duration_seconds=time.monotonic() - start,
                bytes_transferred=bytes_transferred,
                attempts=attempts,
            )

        if decision.action == DecisionAction.SKIP:
            return outcome(OutcomeStatus.SKIPPED, decision.reason or "unchanged")
        if decision.action == DecisionAction.CONFLICT:
            return outcome(OutcomeStatus.CONFLICT, decision.reason or "unresolved-conflict")
        if self.config.dry_run:
            return outcome(OutcomeStatus.SKIPPED, "dry-run")

        attempts = 0

        def attempt() -> int:
            nonlocal attempts
            attempts += 1
            try:
                return self._apply(decision)
            except TransferError:
                raise
            except Exception as e:
                raise classify_transfer_error(e, decision.key) from e

        try:
            transferred = self._with_retry(attempt)
        except TransferError as e:
            logger.warning(f"{decision.action.value} {decision.key} failed after {attempts} attempt(s): {e}")
            return outcome(OutcomeStatus.FAILED, str(e), attempts=attempts)

        logger.debug(f"{decision.action.value} {decision.key} applied ({transferred} bytes)")
        return outcome(OutcomeStatus.APPLIED, bytes_transferred=transferred, attempts=attempts)

    def _with_retry(self, fn: Callable[[], int]) -> int:
        """Call fn, retrying transient failures with exponential backoff."""
        retrying = backoff.on_exception(
            backoff.expo,
            TransientTransferError,
            max_tries=self.retry.max_attempts,
            jitter=backoff.full_jitter,
            on_backoff=self._backoff_handler,
            logger=None,
            factor=self.retry.base_delay,
            max_value=self.retry.max_delay,
        )(fn)
        return retrying()

    def _backoff_handler(self, details: Dict[str, Any]) -> None:
        """Log a retry of a transient failure."""
        logger.info(
            f"Backing off {details['wait']:.2f}s after transient error "
            f"(attempt {details['tries']}/{self.retry.max_attempts}): {details.get('exception')}"
        )

    def _expected_fingerprint(self, decision: Decision) -> Optional[Fingerprint]:
        if self.config.authoritative == "source":
            return decision.source_fingerprint
        return decision.destination_fingerprint

    def _apply(self, decision: Decision) -> int:
        """
        Perform the I/O for one actionable decision.

        Returns:
            Number of payload bytes written

        Raises:
            VerificationError: If the written item does not match the expected fingerprint
        """
        if decision.action == DecisionAction.DELETE:
            removed = self.writer.delete_item(decision.key)
            if not removed:
                logger.debug(f"{decision.key} already absent at destination")
            return 0

        payload = self.reader.read_payload(decision.key)
        written = self.writer.write_payload(decision.key, payload)
        if self.config.verify_writes:
            expected = self._expected_fingerprint(decision)
            if expected is not None and not written.matches(expected):
                raise VerificationError(decision.key)
        return len(payload)
