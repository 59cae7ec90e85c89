# digistore/api/schemas.py
# Pydantic-схемы ответов и запросов. Наружу отдаём camelCase, как ожидает фронтенд.
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from digistore.models.order import OrderStatus, PaymentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ProductOut(CamelModel):
    id: str
    title: str
    slug: str
    short_description: Optional[str] = None
    price: Decimal
    image_url: Optional[str] = None


class OrderItemOut(CamelModel):
    id: str
    product_id: Optional[str] = None
    product_title: str
    product_price: Decimal
    download_count: int
    download_limit: int
    expires_at: Optional[datetime] = None


class OrderOut(CamelModel):
    id: str
    order_number: str
    total_amount: Decimal
    payment_status: PaymentStatus
    order_status: OrderStatus
    utr_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemOut] = []


class AdminOrderOut(OrderOut):
    user_id: str
    user_email: str


class PaymentOut(CamelModel):
    upi_id: str
    amount: str
    note: str
    link: str
    qr_code: str


class SubmitUtrRequest(CamelModel):
    utr_number: str = Field(min_length=5, max_length=50)


class RejectRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class AddToCartRequest(CamelModel):
    product_id: str = Field(min_length=1)
