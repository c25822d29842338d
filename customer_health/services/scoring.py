"""
Scoring flow for one customer: aggregate metrics -> compute -> persist.

Persisting is best effort: the caller already holds the freshly computed
score, so a failed write is logged and the score is returned anyway.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .health import HealthScore, compute_health_score
from .metrics import MetricAggregator
from .score_store import ScoreStore

logger = logging.getLogger(__name__)


class HealthScorer:
    def __init__(self, aggregator: MetricAggregator, store: ScoreStore):
        self.aggregator = aggregator
        self.store = store

    def score(self, customer_id: int, now: Optional[datetime] = None) -> HealthScore:
        now = now or datetime.utcnow()
        bundle = self.aggregator.collect(customer_id, now)
        score = compute_health_score(bundle, customer_id=customer_id, calculated_at=now)
        logger.info(
            "Health score for customer %s: %s (%s)",
            customer_id, score.overall_score, score.health_level,
        )
        try:
            self.store.save(score)
        except SQLAlchemyError:
            logger.exception("Error storing health score for customer %s", customer_id)
        return score
