from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from spliteasy.models.user import User
from spliteasy.core.security import hash_password, verify_password
from spliteasy.core.errors import ValidationError

async def get_user_by_email(db: AsyncSession, email: str):
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()

async def get_user_by_id(db: AsyncSession, id: int):
    return await db.get(User, id)

async def create_user(db: AsyncSession, data):
    existing = await get_user_by_email(db, data.email)
    if existing:
        raise ValidationError("User already exists")

    user = User(
        email=data.email.lower(),
        name=data.name,
        password_hash=hash_password(data.password)
    )

    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user

async def authenticate_user(db: AsyncSession, email: str, password: str):
    user = await get_user_by_email(db, email)
    if not user:
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user
