# Overview: Monotonic document numbers (invoices, purchase orders).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError


DOCUMENT_INVOICE = "INVOICE"
DOCUMENT_PURCHASE_ORDER = "PURCHASE_ORDER"
DOCUMENT_PRODUCT_SKU = "PRODUCT_SKU"

DOCUMENT_PREFIXES = {
    DOCUMENT_INVOICE: "INV",
    DOCUMENT_PURCHASE_ORDER: "PO",
    DOCUMENT_PRODUCT_SKU: "SKU",
}

DEFAULT_PAD = 6


def format_document_number(prefix: str, number: int, pad: int = DEFAULT_PAD) -> str:
    return f"{prefix}-{number:0{pad}d}"


def next_document_number(*, document_type: str, pad: int = DEFAULT_PAD, prefix: str | None = None) -> str:
    """
    Allocate the next number for a document type, e.g. "INV-000042".

    Must run inside the enclosing operation's transaction, right before the
    number is stored on the document. The counter row stays locked by the
    UPDATE until that transaction ends, and a rollback returns the number,
    so an aborted operation never consumes one.
    """
    if document_type not in DOCUMENT_PREFIXES:
        raise ValidationError(f"Unknown document type '{document_type}'")
    prefix = prefix or DOCUMENT_PREFIXES[document_type]

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First allocation for this type: create the row inside a savepoint so a
        # concurrent creator only costs us the savepoint, not the whole operation.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return format_document_number(prefix, 1, pad)
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return format_document_number(prefix, current - 1, pad)


def peek_next_number(document_type: str) -> int:
    """Number the next allocation would hand out (read-only)."""
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current or 1
