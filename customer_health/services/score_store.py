"""
Persistence of computed health scores.

Every computation appends a row to `health_scores`; nothing is overwritten.
Normal reads only ever see the latest row per customer (greatest
`calculated_at`, ties broken by insertion order).
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import HealthScoreRecord
from .health import WEIGHTS, HealthScore, SubScore, health_level

logger = logging.getLogger(__name__)

# breakdown key -> health_scores column
SCORE_COLUMNS = {
    "loginFrequency": "login_frequency_score",
    "featureAdoption": "feature_adoption_score",
    "supportTickets": "support_ticket_score",
    "paymentTimeliness": "payment_timeliness_score",
    "apiUsage": "api_usage_score",
}


def latest_scores_subquery():
    """health_scores rows numbered per customer, rn == 1 being the latest."""
    rn = func.row_number().over(
        partition_by=HealthScoreRecord.customer_id,
        order_by=[HealthScoreRecord.calculated_at.desc(), HealthScoreRecord.id.desc()],
    ).label("rn")
    return select(HealthScoreRecord, rn).subquery("latest_scores")


class ScoreStore:
    def __init__(self, db: Session):
        self.db = db

    def save(self, score: HealthScore) -> HealthScoreRecord:
        """Append one row; on failure the session is rolled back and the error re-raised."""
        record = HealthScoreRecord(
            customer_id=score.customer_id,
            overall_score=score.overall_score,
            calculated_at=score.calculated_at,
            **{column: score.breakdown[key].display_score for key, column in SCORE_COLUMNS.items()},
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info("Stored health score for customer %s: %s", score.customer_id, score.overall_score)
        return record

    def get_latest(self, customer_id: int) -> Optional[HealthScore]:
        record = self.db.execute(
            select(HealthScoreRecord)
            .where(HealthScoreRecord.customer_id == customer_id)
            .order_by(HealthScoreRecord.calculated_at.desc(), HealthScoreRecord.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if record is None:
            return None
        return HealthScore(
            customer_id=record.customer_id,
            breakdown={
                key: SubScore(score=float(getattr(record, column)), weight=WEIGHTS[key])
                for key, column in SCORE_COLUMNS.items()
            },
            overall_score=record.overall_score,
            health_level=health_level(record.overall_score),
            calculated_at=record.calculated_at,
        )
