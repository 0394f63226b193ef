"""Reference data (categories, vendors, contacts, expenses) behind one interface."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from docintake.models.records import Contact, Expense, ExpenseCategory, Vendor
from docintake.services.resolution.matchers import ReferenceEntity
from docintake.utils.clock import db_now

logger = logging.getLogger(__name__)


class ReferenceDataStore(Protocol):
    def list_categories(self, company_id: str) -> list[ReferenceEntity]: ...

    def list_vendors(self, company_id: str) -> list[ReferenceEntity]: ...

    def create_category(
        self,
        company_id: str,
        name: str,
        *,
        description: Optional[str] = None,
        gl_account: Optional[str] = None,
    ) -> str: ...

    def create_vendor(self, company_id: str, name: str, **details: Any) -> str: ...

    def create_contact(self, company_id: str, name: str, **details: Any) -> str: ...

    def create_expense(self, company_id: str, *, amount: float, created_by: Optional[str] = None, **details: Any) -> str: ...


VENDOR_DETAIL_FIELDS = ("email", "phone", "website", "address", "tax_id", "description")
CONTACT_DETAIL_FIELDS = ("email", "phone", "title", "company_name", "website", "vendor_id")
EXPENSE_DETAIL_FIELDS = (
    "vendor_id",
    "category_id",
    "vendor_name",
    "subtotal",
    "tax_amount",
    "currency",
    "expense_date",
    "description",
    "invoice_number",
    "gl_account",
    "source_filename",
)


def _money(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _as_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class SqlReferenceStore:
    """SQLAlchemy implementation.  Writes are flushed, never committed here."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_categories(self, company_id: str) -> list[ReferenceEntity]:
        rows = (
            self.db.query(ExpenseCategory)
            .filter(ExpenseCategory.company_id == company_id, ExpenseCategory.is_active.is_(True))
            .order_by(ExpenseCategory.created_at.asc(), ExpenseCategory.id.asc())
            .all()
        )
        return [
            ReferenceEntity(
                id=str(row.id),
                name=row.name,
                description=row.description,
                extra={"gl_account": row.gl_account} if row.gl_account else {},
            )
            for row in rows
        ]

    def list_vendors(self, company_id: str) -> list[ReferenceEntity]:
        rows = (
            self.db.query(Vendor)
            .filter(Vendor.company_id == company_id, Vendor.is_active.is_(True))
            .order_by(Vendor.created_at.asc(), Vendor.id.asc())
            .all()
        )
        return [
            ReferenceEntity(
                id=str(row.id),
                name=row.name,
                email=row.email,
                phone=row.phone,
                website=row.website,
                description=row.description,
            )
            for row in rows
        ]

    def create_category(
        self,
        company_id: str,
        name: str,
        *,
        description: Optional[str] = None,
        gl_account: Optional[str] = None,
    ) -> str:
        row = ExpenseCategory(
            company_id=company_id,
            name=name,
            description=description,
            gl_account=gl_account,
            created_at=db_now(self.db),
        )
        self.db.add(row)
        self.db.flush()
        logger.info("Created category %s for company %s", row.id, company_id)
        return str(row.id)

    def create_vendor(self, company_id: str, name: str, **details: Any) -> str:
        values = {key: details.get(key) for key in VENDOR_DETAIL_FIELDS if details.get(key) is not None}
        row = Vendor(company_id=company_id, name=name, created_at=db_now(self.db), **values)
        self.db.add(row)
        self.db.flush()
        logger.info("Created vendor %s for company %s", row.id, company_id)
        return str(row.id)

    def create_contact(self, company_id: str, name: str, **details: Any) -> str:
        values = {key: details.get(key) for key in CONTACT_DETAIL_FIELDS if details.get(key) is not None}
        row = Contact(company_id=company_id, name=name, created_at=db_now(self.db), **values)
        self.db.add(row)
        self.db.flush()
        logger.info("Created contact %s for company %s", row.id, company_id)
        return str(row.id)

    def create_expense(self, company_id: str, *, amount: float, created_by: Optional[str] = None, **details: Any) -> str:
        values = {key: details.get(key) for key in EXPENSE_DETAIL_FIELDS if details.get(key) is not None}
        for key in ("subtotal", "tax_amount"):
            if key in values:
                values[key] = _money(values[key])
        if "expense_date" in values:
            values["expense_date"] = _as_date(values["expense_date"])
        row = Expense(
            company_id=company_id,
            amount=_money(amount),
            created_by=created_by,
            created_at=db_now(self.db),
            **values,
        )
        self.db.add(row)
        self.db.flush()
        logger.info("Created expense %s for company %s", row.id, company_id)
        return str(row.id)
