"""HTTP 请求体模型。"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class NumberCreate(BaseModel):
    value: str
    country_code: str
    channel_type: str
    service_type: str
    name: Optional[str] = None
    rate_per_minute: Optional[Decimal] = None
    rate_per_sms: Optional[Decimal] = None
    owner_id: Optional[int] = None
    is_test: bool = False


class NumberRequestCreate(BaseModel):
    country: str
    service_type: str
    quantity: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class PayoutCreate(BaseModel):
    amount: Decimal
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class StatusChange(BaseModel):
    """状态推进请求（提现与号码申请共用）。"""
    status: str
    notes: Optional[str] = None
    transaction_id: Optional[str] = None
    assigned_number_ids: Optional[List[int]] = None


class MessageReply(BaseModel):
    response_text: str
