# app/auth/router.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi import Body

from sqlalchemy.orm import Session
from sqlmodel import select

from app.core.database import get_session
from app.auth import models, schemas, security
from app.auth.deps import get_current_user
from app.core.limiter import limiter

router = APIRouter(tags=["auth"])

# Configure logging
logger = logging.getLogger(__name__)


@router.post("/register", response_model=schemas.Token, status_code=201)
@limiter.limit("10/minute")
def register(
    request: Request,
    user_in: schemas.UserCreate,
    db: Session = Depends(get_session),
):
    exists = db.scalar(select(models.User).where(models.User.email == user_in.email))
    if exists:
        raise HTTPException(400, "E-mail already registered")

    user = models.User(
        email=user_in.email,
        hashed_password=security.hash_password(user_in.password),
        role=user_in.role,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered {user.role} {user.id}")

    access = security.create_access_token(sub=user.id)
    return {"access_token": access, "token_type": "bearer"}


@router.post("/login", response_model=schemas.Token, status_code=status.HTTP_200_OK)
@limiter.limit("5/minute")
def login(
    request: Request,
    user_in: schemas.UserLogin = Body(...),
    db: Session = Depends(get_session),
):
    user = db.scalar(select(models.User).where(models.User.email == user_in.email))
    if not user or not security.verify_password(user_in.password, user.hashed_password):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Incorrect credentials")

    access_token = security.create_access_token(sub=str(user.id))
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.UserRead)
def read_current_user(
    current_user: models.User = Depends(get_current_user),
):
    return current_user
