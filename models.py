from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


MAX_CLIENT_ID = 2**16 - 1
MAX_TRANSACTION_ID = 2**64 - 1

# same bounds as a 96-bit mantissa with at most 28 fractional digits
MAX_AMOUNT = Decimal("1e28")
MAX_AMOUNT_SCALE = 28


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"

    @property
    def is_monetary(self) -> bool:
        return self in (TransactionType.deposit, TransactionType.withdrawal)


REFERENCE_TYPES = frozenset(
    t.value for t in (TransactionType.dispute, TransactionType.resolve, TransactionType.chargeback)
)


class Transaction(BaseModel):
    """A single ledger event.

    Frozen so that equality and hashing cover every field: two rows with the
    same type, client, tx and amount are the same transaction.
    """

    model_config = ConfigDict(frozen=True)

    type: TransactionType = Field(..., description="Transaction type")
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TRANSACTION_ID, description="Transaction identifier")
    amount: Optional[Decimal] = Field(
        None,
        description="Transaction amount, only present for deposits and withdrawals"
    )

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def normalize_amount(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @model_validator(mode='before')
    @classmethod
    def drop_reference_amount(cls, data):
        # disputes, resolves and chargebacks reference an amount, they never carry one
        if isinstance(data, dict):
            kind = data.get('type')
            if isinstance(kind, str) and kind.strip().lower() in REFERENCE_TYPES:
                data = {**data, 'amount': None}
        return data

    @model_validator(mode='after')
    def validate_amount_type_consistency(self):
        if self.type.is_monetary:
            if self.amount is None:
                raise ValueError(f'{self.type.value} transactions require an amount')
            if self.amount < 0:
                raise ValueError('Amount cannot be negative')
            if self.amount >= MAX_AMOUNT:
                raise ValueError(f'Amount must be less than {MAX_AMOUNT:f}')
            if self.amount.as_tuple().exponent < -MAX_AMOUNT_SCALE:
                raise ValueError(f'Amount cannot have more than {MAX_AMOUNT_SCALE} decimal places')
        return self

    @property
    def signed_amount(self) -> Optional[Decimal]:
        """Positive for deposits, negative for withdrawals, None otherwise."""
        if self.type == TransactionType.deposit:
            return self.amount
        if self.type == TransactionType.withdrawal:
            return -self.amount
        return None


class Account(BaseModel):
    model_config = ConfigDict(frozen=True)

    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="Available plus held funds")
    locked: bool = Field(..., description="Whether a chargeback locked the account")


class AccountsRequest(BaseModel):
    transactions: List[Transaction] = Field(..., description="Batch of transactions to replay")


class AccountsResponse(BaseModel):
    accounts: List[Account] = Field(..., description="One snapshot per client, sorted by client")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    batches_processed: int = Field(..., description="Batches replayed by this process")
    transactions_processed: int = Field(..., description="Transactions replayed by this process")
