from __future__ import annotations

import logging
from typing import Iterable

from brewqueue.models.work_item import ItemStatus, WorkItem
from brewqueue.services.scoring import FAIRNESS_SKIP_THRESHOLD

logger = logging.getLogger(__name__)


class FairnessTracker:
    """Counts how often each pending item is overtaken by a later arrival.

    The skip count feeds the fairness component of the score, so an item
    that keeps being passed over eventually outranks newer work.
    """

    def penalize_skipped(
        self, selected: WorkItem, pending: Iterable[WorkItem]
    ) -> list[WorkItem]:
        """Bump the skip count of every pending item that arrived before ``selected``.

        Mutates the given items and returns the ones that changed.
        """
        skipped: list[WorkItem] = []
        for item in pending:
            if item.id == selected.id or item.status is not ItemStatus.PENDING:
                continue
            if item.arrival_time < selected.arrival_time:
                item.skip_count += 1
                skipped.append(item)

                if item.skip_count > FAIRNESS_SKIP_THRESHOLD:
                    logger.warning(
                        "Item %s has been skipped %d times", item.id, item.skip_count
                    )
        return skipped
