# digistore/models/download_log.py
# Журнал выданных ссылок на скачивание. Только добавление записей.
from sqlalchemy import Column, String, DateTime
from datetime import datetime
import uuid

from digistore.db.base import Base


class DownloadLog(Base):
    __tablename__ = "download_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), index=True, nullable=False)
    order_item_id = Column(String(36), index=True, nullable=False)
    product_id = Column(String(36), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
