from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-day counter for human-readable document numbers (invoices, orders).

    WHY NOT MAX(invoice_no)+1: two concurrent creators read the same MAX and
    collide. This row is incremented with a single UPDATE inside the caller's
    DB transaction, so:
    - concurrent allocators serialize on the row
    - a caller that rolls back also rolls back its increment (no visible gap
      and no number handed to anyone else)

    next_number is the number the NEXT allocation will receive.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "sequence_date", name="uq_document_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    sequence_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "document_type": self.document_type,
            "sequence_date": self.sequence_date.isoformat(),
            "next_number": self.next_number,
        }
