"""
Tournament activity log: best-effort audit trail of results, progression passes and tiebreaks.

A failed log write never fails the operation that triggered it.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.tournament_activity import TournamentActivity

logger = logging.getLogger(__name__)


def log_activity(
    session: Session,
    tournament_id: int,
    activity_type: str,
    message: str,
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[TournamentActivity]:
    entry = TournamentActivity(
        tournament_id=tournament_id,
        activity_type=activity_type,
        message=message,
        payload=payload or {},
    )
    try:
        session.add(entry)
        session.commit()
        session.refresh(entry)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to log activity '{activity_type}' for tournament {tournament_id}: {e}")
        return None
    return entry


def list_activity(session: Session, tournament_id: int, limit: int = 100) -> List[TournamentActivity]:
    """Most recent entries first."""
    return session.exec(
        select(TournamentActivity)
        .where(TournamentActivity.tournament_id == tournament_id)
        .order_by(TournamentActivity.created_at.desc(), TournamentActivity.id.desc())
        .limit(limit)
    ).all()
