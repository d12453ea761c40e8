"""
Comparison of source and destination listings into per-key decisions.
"""

import logging
from typing import List, Mapping, Optional

from ..exceptions import EnumerationError
from ..models.config import ConflictPolicy, SyncConfig, SyncMode
from ..models.sync import Decision, DecisionAction, Item
from .baseline import BaselineStore

logger = logging.getLogger(__name__)


class Comparator:
    """
    Classifies every key of two listings into exactly one decision.

    The comparator has no side effects. The baseline store, when given, is
    only read: it supplies the last fingerprint both sides agreed on, which is
    what distinguishes a plain update from a conflict.
    """

    def __init__(self, baseline: Optional[BaselineStore] = None):
        self.baseline = baseline

    def compare(
        self,
        source: Optional[Mapping[str, Item]],
        destination: Optional[Mapping[str, Item]],
        config: SyncConfig,
    ) -> List[Decision]:
        """
        Produce one decision per key present in either listing.

        Args:
            source: Source listing, key to item
            destination: Destination listing, key to item
            config: Run configuration (direction, mode, conflict policy)

        Returns:
            Decisions in key order

        Raises:
            EnumerationError: If either listing is missing
        """
        if source is None:
            raise EnumerationError("Source listing is unavailable")
        if destination is None:
            raise EnumerationError("Destination listing is unavailable")

        decisions = [
            self._decide(key, source.get(key), destination.get(key), config)
            for key in sorted(set(source) | set(destination))
        ]
        logger.debug(f"Compared {len(decisions)} keys")
        return decisions

    def _decide(
        self,
        key: str,
        source_item: Optional[Item],
        destination_item: Optional[Item],
        config: SyncConfig,
    ) -> Decision:
        source_fp = source_item.fingerprint if source_item else None
        destination_fp = destination_item.fingerprint if destination_item else None

        def decision(action: DecisionAction, reason: Optional[str] = None) -> Decision:
            return Decision(
                key=key,
                action=action,
                source_fingerprint=source_fp,
                destination_fingerprint=destination_fp,
                reason=reason,
            )

        if config.authoritative == "source":
            authoritative_fp, written_fp = source_fp, destination_fp
        else:
            authoritative_fp, written_fp = destination_fp, source_fp

        if written_fp is None:
            return decision(DecisionAction.CREATE)

        if authoritative_fp is None:
            if config.mode == SyncMode.INSERT_UPDATE:
                return decision(DecisionAction.SKIP, "insert-update")
            return decision(DecisionAction.DELETE)

        if authoritative_fp.matches(written_fp):
            return decision(DecisionAction.SKIP, "unchanged")

        baseline_fp = self.baseline.get(key) if self.baseline is not None else None
        if baseline_fp is None or baseline_fp.matches(source_fp) or baseline_fp.matches(destination_fp):
            return decision(DecisionAction.UPDATE)

        # Both sides moved away from the last agreed state
        if config.conflict_policy == ConflictPolicy.MANUAL:
            return decision(DecisionAction.CONFLICT, "both-changed")

        winner = "source" if config.conflict_policy == ConflictPolicy.SOURCE_WINS else "destination"
        reason = config.conflict_policy.value.replace("_", "-")
        if winner == config.authoritative:
            return decision(DecisionAction.UPDATE, reason)
        return decision(DecisionAction.SKIP, reason)
