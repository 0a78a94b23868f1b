"""
Prediction Service

Storage-side operations on the predictions relation: create, update, read
and erase. Dual uniqueness (client token, network hash) is enforced by the
database's unique constraints; an IntegrityError is classified here, once,
into one of the two conflict kinds.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ServerError
from ..models.db_models import PredictionDB, utcnow
from .aggregation import WeightedPrediction, compare_to_median, weighted_median
from .identity import token_prefix
from .weighting import calculate_weight

logger = logging.getLogger(__name__)


@dataclass
class Aggregate:
    """Freshly computed aggregate over every stored prediction."""
    median: Optional[date]
    min: Optional[date]
    max: Optional[date]
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "median": self.median.isoformat() if self.median else None,
            "min": self.min.isoformat() if self.min else None,
            "max": self.max.isoformat() if self.max else None,
            "count": self.count,
        }


class PredictionService:
    """Create/update/read/erase for one caller's prediction."""

    def __init__(self, db: Session, reference_date: date):
        self.db = db
        self.reference_date = reference_date

    # =========================================================================
    # READS
    # =========================================================================

    def get_by_cookie(self, cookie_id: str) -> Optional[PredictionDB]:
        return self.db.query(PredictionDB).filter(PredictionDB.cookie_id == cookie_id).first()

    def get_own(self, cookie_id: Optional[str]) -> PredictionDB:
        """The caller's stored row; NotFoundError when there is none."""
        row = self.get_by_cookie(cookie_id) if cookie_id else None
        if row is None:
            raise NotFoundError("No prediction found for this browser.")
        return row

    def weighted_rows(self) -> List[WeightedPrediction]:
        rows = self.db.query(PredictionDB.predicted_date, PredictionDB.weight).all()
        return [WeightedPrediction(predicted_date, weight) for predicted_date, weight in rows]

    def aggregate(self) -> Aggregate:
        count, earliest, latest = self.db.query(
            func.count(PredictionDB.id),
            func.min(PredictionDB.predicted_date),
            func.max(PredictionDB.predicted_date),
        ).one()
        median = weighted_median(self.weighted_rows()) if count else None
        return Aggregate(median=median, min=earliest, max=latest, count=count or 0)

    # =========================================================================
    # WRITES
    # =========================================================================

    def submit(
        self,
        cookie_id: str,
        ip_hash: str,
        predicted_date: date,
        user_agent: Optional[str] = None,
    ) -> PredictionDB:
        """
        Insert a new prediction.

        No pre-check: the insert either wins both unique constraints or fails
        and is classified. Raises ConflictError.
        """
        now = utcnow()
        row = PredictionDB(
            predicted_date=predicted_date,
            submitted_at=now,
            updated_at=now,
            ip_hash=ip_hash,
            cookie_id=cookie_id,
            user_agent=user_agent,
            weight=calculate_weight(predicted_date, self.reference_date),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise self._classify_conflict(cookie_id, ip_hash)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Prediction insert failed: {e}")
            raise ServerError("Failed to save prediction. Please try again.")

        self.db.refresh(row)
        logger.info(
            f"Prediction created: id={row.id} date={predicted_date.isoformat()} "
            f"weight={row.weight} cookie={token_prefix(cookie_id)}"
        )
        return row

    def _classify_conflict(self, cookie_id: str, ip_hash: str) -> ConflictError:
        if self.get_by_cookie(cookie_id) is not None:
            logger.info(f"Duplicate submission from same identity: cookie={token_prefix(cookie_id)}")
            return ConflictError.same_identity()
        logger.info(f"Duplicate submission from same network: ip_hash={ip_hash[:8]}")
        return ConflictError.same_network()

    def update(
        self,
        cookie_id: Optional[str],
        ip_hash: str,
        predicted_date: date,
        user_agent: Optional[str] = None,
    ) -> Tuple[PredictionDB, bool]:
        """
        Change the caller's predicted date. Returns (row, changed).

        Same date is a no-op and leaves updated_at untouched. The row follows
        the caller to a new network unless another identity already holds
        that network hash.
        """
        row = self.get_by_cookie(cookie_id) if cookie_id else None
        if row is None:
            raise NotFoundError("No prediction found. Use POST to create a new prediction.")

        if row.predicted_date == predicted_date:
            logger.info(f"Prediction update is a no-op: id={row.id} date={predicted_date.isoformat()}")
            return row, False

        previous = row.predicted_date
        row.predicted_date = predicted_date
        row.weight = calculate_weight(predicted_date, self.reference_date)
        row.updated_at = utcnow()
        if user_agent is not None:
            row.user_agent = user_agent

        moved_network = False
        if ip_hash != row.ip_hash and not self._network_taken(ip_hash, row.id):
            row.ip_hash = ip_hash
            moved_network = True

        try:
            self.db.commit()
        except IntegrityError:
            # another identity claimed the network hash between check and write
            self.db.rollback()
            if not moved_network:
                raise ServerError("Failed to update prediction. Please try again.")
            return self._retry_update_without_network(cookie_id, predicted_date, user_agent, previous)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Prediction update failed: {e}")
            raise ServerError("Failed to update prediction. Please try again.")

        self.db.refresh(row)
        logger.info(
            f"Prediction updated: id={row.id} {previous.isoformat()} -> {predicted_date.isoformat()} "
            f"weight={row.weight} moved_network={moved_network}"
        )
        return row, True

    def _retry_update_without_network(
        self,
        cookie_id: str,
        predicted_date: date,
        user_agent: Optional[str],
        previous: date,
    ) -> Tuple[PredictionDB, bool]:
        row = self.get_by_cookie(cookie_id)
        if row is None:
            raise NotFoundError("No prediction found. Use POST to create a new prediction.")
        row.predicted_date = predicted_date
        row.weight = calculate_weight(predicted_date, self.reference_date)
        row.updated_at = utcnow()
        if user_agent is not None:
            row.user_agent = user_agent
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Prediction update retry failed: {e}")
            raise ServerError("Failed to update prediction. Please try again.")
        self.db.refresh(row)
        logger.info(
            f"Prediction updated (network hash kept): id={row.id} "
            f"{previous.isoformat()} -> {predicted_date.isoformat()}"
        )
        return row, True

    def _network_taken(self, ip_hash: str, own_id: int) -> bool:
        return self.db.query(PredictionDB.id).filter(
            PredictionDB.ip_hash == ip_hash,
            PredictionDB.id != own_id,
        ).first() is not None

    def delete(self, cookie_id: str, reason: Optional[str] = None) -> None:
        """Erase the owner's row. NotFoundError when it does not exist."""
        try:
            deleted = self.db.query(PredictionDB).filter(
                PredictionDB.cookie_id == cookie_id
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Prediction deletion failed: {e}")
            raise ServerError("Failed to delete prediction. Please try again.")

        if not deleted:
            raise NotFoundError("No prediction found for this Cookie ID. It may have already been deleted.")
        logger.info(f"Prediction erased: cookie={token_prefix(cookie_id)} reason={reason or '-'}")


def comparison_block(predicted_date: date, aggregate: Aggregate) -> Dict[str, Any]:
    """Stats plus the caller's offset from the median, for POST/PUT responses."""
    delta_days, comparison = compare_to_median(predicted_date, aggregate.median)
    return {
        "stats": aggregate.to_dict(),
        "delta_days": delta_days,
        "comparison": comparison,
    }
