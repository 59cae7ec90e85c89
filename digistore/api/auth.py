# digistore/api/auth.py
# Роуты для регистрации и получения JWT токена.
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.core import security
from digistore.core.config import settings
from digistore.models.user import User, RoleEnum

router = APIRouter()


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    name: str | None = None


@router.post("/register", status_code=201)
async def register(data: RegisterRequest, db: AsyncSession = Depends(security.get_db)):
    """
    Регистрация пользователя: email + password.
    По умолчанию роль = customer.
    """
    email = data.email.lower()
    existing = await db.scalar(select(User).where(User.email == email))
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    hashed = security.get_password_hash(data.password)
    user = User(email=email, hashed_password=hashed, name=data.name, role=RoleEnum.customer)
    db.add(user)
    await db.commit()
    return {"id": user.id, "email": user.email, "role": user.role.value}


@router.post("/token")
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(security.get_db)):
    """
    Логин: возвращает access_token (JWT).
    OAuth2PasswordRequestForm ожидает username и password, используем email как username.
    """
    user = await db.scalar(select(User).where(User.email == form_data.username.lower()))
    if not user or not user.hashed_password or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect credentials")
    user.last_login = datetime.utcnow()
    await db.commit()
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = security.create_access_token(subject=str(user.id), expires_delta=access_token_expires)
    return {"access_token": token, "token_type": "bearer"}
