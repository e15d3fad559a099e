from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite+aiosqlite:///./spliteasy.db"
    SQL_ECHO: bool = False
    # create tables on startup instead of running alembic (local dev only)
    AUTO_CREATE_TABLES: bool = False

    JWT_SECRET: str = "dev-secret-change-me-before-deploying"
    JWT_ALGO: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

settings = Settings()
