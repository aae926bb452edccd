from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import InstrumentedAttribute, Session

from stockledger.app.db.models.models_v1 import utcnow


def next_document_number(db: Session, column: InstrumentedAttribute, prefix: str, width: int) -> str:
    """
    Numéro suivant d'une série annuelle, ex. CC-2026-000001.
    Complété par des zéros: le max() de la chaîne est le dernier émis.
    """
    year_prefix = f"{prefix}-{utcnow().year}-"
    last = db.execute(
        select(func.max(column)).where(column.like(f"{year_prefix}%"))
    ).scalar_one_or_none()

    seq = 1
    if last:
        seq = int(last[len(year_prefix):]) + 1
    return f"{year_prefix}{seq:0{width}d}"
