from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    SUPABASE_URL: str
    SUPABASE_SERVICE_KEY: str

    REDIS_URL: str = "redis://localhost:6379"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    TIMEZONE: str = "Asia/Kathmandu"

    # Kitchen admission control
    MAX_KITCHEN_ORDERS: int = 20
    ORDER_TIMEOUT_MINUTES: int = 30
    DUPLICATE_ORDER_WINDOW_MINUTES: int = 5
    KITCHEN_QUEUE_CACHE_SECONDS: int = 10

    KHALTI_GATEWAY_URL: str = "https://dev.khalti.com"
    KHALTI_SECRET_KEY: str = ""
    KHALTI_RETURN_URL: str = ""
    KHALTI_WEBSITE_URL: str = ""
    KHALTI_POLL_SECONDS: int = 120

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"

settings = Settings()
