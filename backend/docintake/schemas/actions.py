from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class ActionType(StrEnum):
    CREATE_EXPENSE = "create_expense"
    CREATE_VENDOR = "create_vendor"
    CREATE_CONTACT = "create_contact"


class ActionCardStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"


class ActionPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExpenseCardData(BaseModel):
    kind: Literal["create_expense"] = "create_expense"
    amount: float = 0.0
    subtotal: Optional[float] = None
    tax_amount: Optional[float] = None
    currency: str = "USD"
    expense_date: Optional[date] = None
    description: Optional[str] = None
    invoice_number: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    gl_account: Optional[str] = None
    source_filename: Optional[str] = None


class VendorCardData(BaseModel):
    kind: Literal["create_vendor"] = "create_vendor"
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    description: Optional[str] = None
    suggestion_id: Optional[str] = None


class ContactCardData(BaseModel):
    kind: Literal["create_contact"] = "create_contact"
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None
    website: Optional[str] = None
    vendor_id: Optional[str] = None


CardData = Annotated[
    Union[ExpenseCardData, VendorCardData, ContactCardData],
    Field(discriminator="kind"),
]


class ActionCard(BaseModel):
    id: str
    type: ActionType
    title: str
    description: str = ""
    data: CardData
    confidence: float = Field(ge=0.0, le=1.0)
    priority: ActionPriority = ActionPriority.MEDIUM
    status: ActionCardStatus = ActionCardStatus.PENDING
    approval_required: bool = True
    reasons: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    result_entity_id: Optional[str] = None


class CardDecisionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
