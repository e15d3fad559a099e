from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.schemas.user import UserCreate, UserOut, UserLogin, TokenOut
from spliteasy.models.user import User
from spliteasy.services.user_service import create_user, authenticate_user
from spliteasy.core.dependencies import get_current_user
from spliteasy.core.security import create_access_token

router = APIRouter()

@router.post("/register", response_model=UserOut, status_code=201)
async def register_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    return await create_user(db, data)

@router.post("/login", response_model=TokenOut)
async def login_user(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await authenticate_user(db, data.email, data.password)

    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return {"access_token": create_access_token(user.id), "user": user}

@router.get("/me", response_model=UserOut)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
