# digistore/models/product.py
# Модель товара (цифровой файл). Каталог здесь только читается, кроме счётчиков.
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Text
from datetime import datetime
import uuid

from digistore.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    short_description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String, nullable=True)
    file_ref = Column(String, nullable=True)  # public_id файла в Cloudinary
    is_active = Column(Boolean, default=True, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
