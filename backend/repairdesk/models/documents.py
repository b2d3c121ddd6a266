from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow


class FolioSequence(db.Model):
    """
    Per (prefix, branch, period) folio counter.

    Mutated only through a single upsert-with-increment statement, so the
    unique constraint below is what serializes concurrent issuers.
    """
    __tablename__ = "folio_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "branch_id", "period", name="uq_folio_sequences_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    period = db.Column(db.String(6), nullable=False)
    seq = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "branch_id": self.branch_id,
            "period": self.period,
            "seq": self.seq,
        }
