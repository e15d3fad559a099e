from pydantic import EmailStr, Field
from spliteasy.schemas.base import APIModel

class UserCreate(APIModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)

class UserLogin(APIModel):
    email: EmailStr
    password: str

class UserOut(APIModel):
    id: int
    name: str
    email: EmailStr

class TokenOut(APIModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
