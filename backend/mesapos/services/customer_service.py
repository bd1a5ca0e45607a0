# Overview: Customer registry; upsert by (document type, number) and the emission-time customer resolution.

from __future__ import annotations

import logging
import re

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_DOCUMENT_TYPES
from ..validation import clean_text

logger = logging.getLogger(__name__)

DOCUMENT_LENGTHS = {"RUC": 11, "DNI": 8}


def normalize_document(document_type: str | None, document_number) -> tuple[str, str]:
    """Upper-case the type, strip non-digits from the number and check its length."""
    doc_type = (document_type or "").strip().upper()
    if doc_type not in CUSTOMER_DOCUMENT_TYPES:
        raise ValidationError(
            "document_type must be RUC or DNI",
            details={"allowed": list(CUSTOMER_DOCUMENT_TYPES)},
        )
    number = re.sub(r"\D", "", str(document_number or ""))
    expected = DOCUMENT_LENGTHS[doc_type]
    if len(number) != expected:
        raise ValidationError(f"{doc_type} must have {expected} digits")
    return doc_type, number


def _clean_email(value) -> str | None:
    email = clean_text(value)
    return email.lower() if email else None


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})
    return customer


def get_by_document(document_type: str, document_number) -> Customer | None:
    doc_type, number = normalize_document(document_type, document_number)
    return (
        db.session.query(Customer)
        .filter_by(document_type=doc_type, document_number=number)
        .first()
    )


def upsert_customer(
    document_type: str,
    document_number,
    name: str,
    address: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    *,
    commit: bool = True,
) -> Customer:
    """Create the customer, or update the existing one with the same (type, number)."""
    doc_type, number = normalize_document(document_type, document_number)
    name = clean_text(name)
    if not name:
        raise ValidationError("Customer name is required")

    customer = (
        db.session.query(Customer)
        .filter_by(document_type=doc_type, document_number=number)
        .first()
    )
    if customer is None:
        customer = Customer(document_type=doc_type, document_number=number, name=name)
        db.session.add(customer)

    customer.name = name
    customer.address = clean_text(address)
    customer.email = _clean_email(email)
    customer.phone = clean_text(phone)

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return customer


def update_customer(
    customer_id: int,
    name: str,
    address: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    *,
    commit: bool = True,
) -> Customer:
    """Update contact fields; the document identity of a customer never changes."""
    customer = get_customer(customer_id)
    name = clean_text(name)
    if not name:
        raise ValidationError("Customer name is required")
    customer.name = name
    customer.address = clean_text(address)
    customer.email = _clean_email(email)
    customer.phone = clean_text(phone)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return customer


def resolve_customer(customer: dict | None, metadata: dict | None = None, *, commit: bool = True) -> Customer | None:
    """
    Customer to attach to a sale being closed.

    metadata = {"customer_id": int | None, "has_changes": bool} as sent by the
    close dialog:
    - known id and no changes -> reuse the row as is
    - known id with changes   -> update its contact fields
    - no id                   -> create, or update by (type, number)
    """
    if not customer:
        return None
    metadata = metadata or {}
    customer_id = metadata.get("customer_id")
    has_changes = bool(metadata.get("has_changes"))

    if customer_id and not has_changes:
        return get_customer(customer_id)
    if customer_id and has_changes:
        return update_customer(
            customer_id,
            customer.get("name"),
            address=customer.get("address"),
            email=customer.get("email"),
            phone=customer.get("phone"),
            commit=commit,
        )
    return upsert_customer(
        customer.get("document_type"),
        customer.get("document_number"),
        customer.get("name"),
        address=customer.get("address"),
        email=customer.get("email"),
        phone=customer.get("phone"),
        commit=commit,
    )
