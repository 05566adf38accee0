"""
pos/billing/invoice.py
----------------------
Invoice numbers for recorded sales.

Format:  YYYY-NNNNNN
Example: 2026-000001, 2026-000002, …

The InvoiceSequence row for the year is locked with SELECT … FOR UPDATE
and held until the caller's transaction ends, so the number and the
Sale INSERT commit (or roll back) together.
"""
from datetime import datetime


def _locked_sequence(db_session, year):
    from pos.billing.models import InvoiceSequence

    return (
        db_session.query(InvoiceSequence)
        .filter(InvoiceSequence.year == year)
        .with_for_update()
        .first()
    )


def generate_invoice_number(db_session, year: int = None) -> str:
    """
    Return the next invoice number for `year` (default: current year).

    MUST be called inside an open SQLAlchemy transaction.
    """
    from pos.billing.models import InvoiceSequence

    year = year or datetime.now().year

    seq_row = _locked_sequence(db_session, year)
    if seq_row is None:
        # First sale of the year
        db_session.add(InvoiceSequence(year=year, last_seq=0))
        db_session.flush()
        seq_row = _locked_sequence(db_session, year)

    seq_row.last_seq += 1
    db_session.flush()

    return f"{year}-{seq_row.last_seq:06d}"
