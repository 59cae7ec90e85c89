# digistore/models/admin_log.py
# Журнал действий администратора. details: размеченное объединение по полю action.
import datetime
import uuid
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.db.base import Base


class VerifiedPaymentDetails(BaseModel):
    action: Literal["verified_payment"] = "verified_payment"
    order_number: str
    amount: str
    activated: List[str] = []
    failed: List[str] = []


class RejectedPaymentDetails(BaseModel):
    action: Literal["rejected_payment"] = "rejected_payment"
    order_number: str
    reason: Optional[str] = None


class ReactivatedEntitlementsDetails(BaseModel):
    action: Literal["reactivated_entitlements"] = "reactivated_entitlements"
    order_number: str
    activated: List[str] = []
    failed: List[str] = []


AdminActionDetails = Annotated[
    Union[VerifiedPaymentDetails, RejectedPaymentDetails, ReactivatedEntitlementsDetails],
    Field(discriminator="action"),
]

details_adapter = TypeAdapter(AdminActionDetails)


class AdminLog(Base):
    __tablename__ = "admin_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    admin_id = Column(String(36), nullable=False)
    action = Column(String(64), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(36), nullable=False)
    details = Column(JSON, default=dict)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    @property
    def parsed_details(self):
        """Возвращает details как типизированную модель."""
        return details_adapter.validate_python(self.details)

    @staticmethod
    async def log(
        session: AsyncSession,
        admin_id: str,
        entity_type: str,
        entity_id: str,
        details: BaseModel,
        ip_address: str | None = None,
    ) -> "AdminLog":
        # action берётся из самой модели, чтобы тег и схема не расходились
        payload = details_adapter.validate_python(details.model_dump())
        rec = AdminLog(
            admin_id=admin_id,
            action=payload.action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=payload.model_dump(mode="json"),
            ip_address=ip_address,
            created_at=datetime.datetime.utcnow(),
        )
        session.add(rec)
        await session.commit()
        return rec
