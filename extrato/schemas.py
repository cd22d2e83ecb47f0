# extrato/schemas.py
# Role: Pydantic request/response bodies for the JSON API.
#       External field names are camelCase (userId, periodStart, ...);
#       Python code uses snake_case through populate_by_name.

from datetime import date as date_type
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Direction = Literal["income", "spend"]
MovementKind = Literal["spend", "income", "transfer", "invest", "fee"]
CategoryKind = Literal["spend", "income", "transfer", "invest", "fee"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Ingestion ----

class TransactionIn(BaseModel):
    """
    One transaction to ingest.

    Field names follow the classifier output where they overlap, so
    `type` is accepted for `direction` and `counterparty_normalized` for `merchant`.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: date_type
    description: str = Field(min_length=1)
    amount: float
    direction: Direction = Field(alias="type")
    merchant: Optional[str] = Field(default=None, alias="counterparty_normalized")

    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    category: Optional[str] = Field(default=None, alias="category_label")
    subcategory: Optional[str] = Field(default=None, alias="subcategory_label")

    payment_method_id: Optional[int] = None
    payment_method: Optional[str] = None
    bank_id: Optional[int] = None

    movement_kind: Optional[MovementKind] = None
    notes: Optional[str] = None

    is_internal_transfer: bool = False
    is_card_bill_payment: bool = False
    is_investment: bool = False
    is_refund: bool = False
    is_fee: bool = False

    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    hash: Optional[str] = None


class IngestRequest(CamelModel):
    user_id: int = Field(gt=0)
    period_start: date_type
    period_end: date_type
    source_file: str = Field(min_length=1)
    bank_id: Optional[int] = None
    transacoes: List[TransactionIn] = Field(min_length=1)


class IngestResponse(CamelModel):
    statement_id: int
    inserted: int
    duplicates: int


class UploadResponse(IngestResponse):
    total_classified: int
    skipped: int
    dialect: str


class StatementOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    user_id: int
    period_start: date_type
    period_end: date_type
    source_file: str
    bank_id: Optional[int] = None
    transaction_count: int = 0


# ---- Transactions CRUD ----

class TransactionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: Optional[date_type] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    direction: Optional[Direction] = Field(default=None, alias="type")
    amount: Optional[float] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    bank_id: Optional[int] = None
    notes: Optional[str] = None
    movement_kind: Optional[MovementKind] = None
    is_internal_transfer: Optional[bool] = None
    is_card_bill_payment: Optional[bool] = None
    is_investment: Optional[bool] = None
    is_refund: Optional[bool] = None
    is_fee: Optional[bool] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# ---- Categories ----

class CategoryCreate(CamelModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None
    kind: CategoryKind = "spend"
    parent_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CategoryUpdate(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    kind: Optional[CategoryKind] = None
    parent_id: Optional[int] = None
