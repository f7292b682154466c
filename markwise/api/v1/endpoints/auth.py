# markwise/api/v1/endpoints/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from markwise.core.security import (
    authenticate_user,
    create_access_token,
    get_password_hash,
)
from markwise.db.session import get_db
from markwise.models.user import User
from markwise.schemas.auth import (
    Token,
    LoginRequest,
    RegisterRequest,
    UserPublic,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _login(db: Session, email: str, password: str) -> Token:
    user = authenticate_user(db, email.strip().lower(), password)
    if user is None:
        logger.warning("Rejected login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Token(access_token=create_access_token(data={"sub": user.email}))


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)):
    """
    Create a teacher or student account. Emails are stored lower-cased so
    students can sign in however they typed their address.
    """
    email = payload.email.strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=email,
        password_hash=get_password_hash(payload.password),
        name=payload.name.strip(),
        role=payload.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered {user.role} {user.id}")
    return user


# JSON body login, used by the web client
@router.post("/login", response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    return _login(db, payload.email, payload.password)


# OAuth2 form login, used by the docs "Authorize" button
@router.post("/token", response_model=Token)
def login_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    """OAuth2 password flow; put the email address in ``username``."""
    return _login(db, form_data.username, form_data.password)
