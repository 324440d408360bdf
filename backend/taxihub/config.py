from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://taxihub:taxihub_secret@db:5432/taxihub"
    JWT_SECRET: str = "taxihub-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 720
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:4173"]
    NEARBY_RADIUS_KM: float = 10.0
    OFFLINE_CACHE_PATH: str = "./offline_cache.db"
    AUTO_CREATE_TABLES: bool = True
    BOOTSTRAP_ADMIN_EMAIL: str | None = None
    BOOTSTRAP_ADMIN_PASSWORD: str | None = None
    BOOTSTRAP_ADMIN_NAME: str = "System Admin"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
