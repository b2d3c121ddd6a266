# Overview: Service-layer operations for folios; issues human-readable sequential document numbers.

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..exceptions import SequenceGenerationFailed, ValidationFailed
from ..extensions import db
from ..models import FolioSequence, MovementType
from ..time_utils import folio_period, utcnow
from .concurrency import run_with_retry, upsert_increment
from .tenant_service import require_branch

"""
Folio invariants (authoritative)

- Key: (prefix, branch_id, period) where period is the UTC year-month (YYYYMM).
- Format: {prefix}-{branch.code}-{period}-{seq:04d}, e.g. VTA-MTY-202501-0001.
- seq is strictly increasing per key and never reused, even when the document
  that consumed it is later cancelled.
- Allocation is one upsert-with-increment statement; the only retry loop in
  the engine lives here and is bounded by FOLIO_MAX_ATTEMPTS.
"""

logger = logging.getLogger(__name__)

TICKET_PREFIX = "LAB"
SALE_PREFIX = "VTA"

MOVEMENT_PREFIXES = {
    MovementType.IN: "ING",
    MovementType.OUT: "EGR",
    MovementType.SALE: "VTA",
    MovementType.ADJUST: "AJU",
    MovementType.TRANSFER_OUT: "TRF_OUT",
    MovementType.TRANSFER_IN: "TRF_IN",
}


def prefix_for_movement(movement_type: MovementType) -> str:
    return MOVEMENT_PREFIXES.get(MovementType(movement_type), "MOV")


def format_folio(prefix: str, branch_code: str, period: str, seq: int) -> str:
    return f"{prefix}-{branch_code}-{period}-{seq:04d}"


def _increment_sequence(prefix: str, branch_id: int, period: str) -> int:
    """Create the key with seq=1 or bump it by one; returns the new seq."""
    table = FolioSequence.__table__
    stmt = upsert_increment(
        table,
        keys={"prefix": prefix, "branch_id": branch_id, "period": period},
        increments={"seq": 1},
        touch={"updated_at": utcnow()},
    ).returning(table.c.seq)

    seq = db.session.execute(stmt).scalar_one()
    db.session.commit()
    return seq


def next_folio(prefix: str, branch_id: int, *, org_id: int, at: datetime | None = None) -> str:
    """
    Allocate the next folio for (prefix, branch, current period).

    Raises:
        NotFound: branch missing or outside org_id
        SequenceGenerationFailed: contention did not clear within the retry budget
    """
    if not prefix:
        raise ValidationFailed("prefix is required")

    period = folio_period(at)

    def _op() -> str:
        branch = require_branch(branch_id, org_id)
        seq = _increment_sequence(prefix, branch.id, period)
        return format_folio(prefix, branch.code, period, seq)

    def _exhausted(attempts: int) -> SequenceGenerationFailed:
        logger.error(
            "Folio generation failed for %s/%s/%s after %d attempts",
            prefix, branch_id, period, attempts,
        )
        return SequenceGenerationFailed(
            prefix=prefix, branch_id=branch_id, period=period, attempts=attempts,
        )

    return run_with_retry(
        _op,
        attempts=current_app.config["FOLIO_MAX_ATTEMPTS"],
        delay=current_app.config["FOLIO_RETRY_DELAY_SECONDS"],
        exhausted=_exhausted,
    )


def preview_folio(prefix: str, branch_id: int, *, org_id: int, at: datetime | None = None) -> str:
    """
    Best guess of the folio next_folio would return. Does not reserve anything.
    """
    if not prefix:
        raise ValidationFailed("prefix is required")

    period = folio_period(at)
    branch = require_branch(branch_id, org_id)

    current = (
        db.session.query(FolioSequence.seq)
        .filter_by(prefix=prefix, branch_id=branch.id, period=period)
        .scalar()
    )
    return format_folio(prefix, branch.code, period, (current or 0) + 1)
