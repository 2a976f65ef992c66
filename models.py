from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer, field_validator
from enum import Enum
from typing import Annotated, Literal, Union
from datetime import datetime
from decimal import Decimal

import amounts

MAX_CLIENT_ID = 65535
MAX_TX_ID = 4294967295


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


FUNDS_TRANSACTION_TYPES = frozenset({TransactionType.deposit, TransactionType.withdrawal})


class FundsTransaction(BaseModel):
    """Deposit or withdrawal: the only records that carry an amount."""

    model_config = ConfigDict(frozen=True)

    type: Literal[TransactionType.deposit, TransactionType.withdrawal]
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TX_ID, description="Transaction identifier")
    amount: Decimal = Field(..., ge=0, description="Amount moved by this transaction")

    @field_validator('amount')
    @classmethod
    def validate_amount_finite(cls, v):
        if not v.is_finite():
            raise ValueError('Amount must be a finite decimal')
        return v


class DisputeAction(BaseModel):
    """Dispute, resolve or chargeback referencing an earlier transaction."""

    model_config = ConfigDict(frozen=True)

    type: Literal[TransactionType.dispute, TransactionType.resolve, TransactionType.chargeback]
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TX_ID, description="Referenced transaction identifier")


TransactionRecord = Annotated[Union[FundsTransaction, DisputeAction], Field(discriminator="type")]


class DisputeState(str, Enum):
    open = "open"
    disputed = "disputed"
    charged_back = "charged_back"


class StoredTransaction(BaseModel):
    """A deposit or withdrawal retained so later disputes can reference it."""

    client: int
    type: TransactionType
    amount: Decimal
    state: DisputeState = DisputeState.open

    @property
    def disputed(self) -> bool:
        return self.state == DisputeState.disputed


class AccountSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    client: int = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="available + held")
    locked: bool = Field(..., description="Whether a chargeback has occurred")

    @field_serializer('available', 'held', 'total', when_used='json')
    def serialize_amount(self, v: Decimal) -> str:
        return amounts.format_amount(v)


class Account(BaseModel):
    client: int
    available: Decimal = amounts.ZERO
    held: Decimal = amounts.ZERO
    locked: bool = False

    @computed_field
    @property
    def total(self) -> Decimal:
        return amounts.add(self.available, self.held)

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            client=self.client,
            available=self.available,
            held=self.held,
            total=self.total,
            locked=self.locked,
        )


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(default_factory=datetime.now)
