import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from spliteasy.core.config import settings
from spliteasy.core.errors import SplitEasyError
from spliteasy.db.session import init_models
from spliteasy.api.v1.routes.user import router as user_router
from spliteasy.api.v1.routes.group import router as group_router
from spliteasy.api.v1.routes.expense import router as expense_router
from spliteasy.api.v1.routes.balances import router as balances_router
from spliteasy.api.v1.routes.settlements import router as settlements_router
from spliteasy.api.v1.routes.chat import router as chat_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        await init_models()
    yield

app = FastAPI(title="SplitEasy Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(SplitEasyError)
async def spliteasy_error_handler(request: Request, exc: SplitEasyError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )

@app.get("/")
async def root():
    return {"message": "SplitEasy Backend is live"}

app.include_router(user_router, prefix="/api/v1/users")
app.include_router(group_router, prefix="/api/v1/groups")
app.include_router(expense_router, prefix="/api/v1/expense")
app.include_router(balances_router, prefix="/api/v1/settle")
app.include_router(settlements_router, prefix="/api/v1/settlements")
app.include_router(chat_router, prefix="/api/v1/chat")
