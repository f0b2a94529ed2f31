# flowfee/config/config.py
from pydantic_settings import SettingsConfigDict, BaseSettings
from typing import Optional


class Settings(BaseSettings):
    PROJECT_NAME: str = "Flowfee Fee Engine"
    API_V1_PREFIX: str = "/api/v1"

    # PostgreSQL database connection settings
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_PORT: Optional[int] = 5432
    POSTGRES_SSL: bool = False
    POSTGRES_POOL_SIZE: int = 5
    POSTGRES_MAX_OVERFLOW: int = 5

    # Stripe keys are picked per call by livemode
    STRIPE_LIVE_SECRET_KEY: str = ""
    STRIPE_TEST_SECRET_KEY: str = ""
    STRIPE_MAX_NETWORK_RETRIES: int = 2

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Get SQLAlchemy database URI"""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    def stripe_secret_key(self, livemode: bool) -> str:
        return self.STRIPE_LIVE_SECRET_KEY if livemode else self.STRIPE_TEST_SECRET_KEY

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file_encoding='utf-8'
    )

# Create settings instance
settings = Settings()
