# digistore/db/base.py
# Общая declarative база для SQLAlchemy.
# Модуль не импортирует модели, чтобы избежать циклических импортов.
# Модели импортируют Base отсюда, а digistore.models регистрирует их все.

from sqlalchemy.orm import declarative_base

Base = declarative_base()
