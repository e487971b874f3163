import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    STOREFRONT_DB_USER: str      = os.getenv("STOREFRONT_DB_USER", "")
    STOREFRONT_DB_PASSWORD: str  = os.getenv("STOREFRONT_DB_PASSWORD", "")
    STOREFRONT_DB_NAME: str      = os.getenv("STOREFRONT_DB_NAME", "")
    STOREFRONT_DB_HOST: str      = os.getenv("STOREFRONT_DB_HOST", "localhost")
    STOREFRONT_DB_PORT: int      = int(os.getenv("STOREFRONT_DB_PORT", "5432"))
    DB_ECHO: bool                = os.getenv("DB_ECHO", "false").lower() == "true"

    STRIPE_SECRET_KEY: str           = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str       = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_SIGNATURE_TOLERANCE: int  = int(os.getenv("STRIPE_SIGNATURE_TOLERANCE", "300"))

    PUBLIC_URL: str         = os.getenv("PUBLIC_URL", "http://localhost:3000")
    CHECKOUT_CURRENCY: str  = os.getenv("CHECKOUT_CURRENCY", "try")

    # "allow" keeps every paid order, "reject" refuses carts exceeding stock
    OVERSELL_POLICY: str  = os.getenv("OVERSELL_POLICY", "allow")
    SELLER_API_KEY: str   = os.getenv("SELLER_API_KEY", "")

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"postgresql+asyncpg://"
            f"{self.STOREFRONT_DB_USER}:"
            f"{self.STOREFRONT_DB_PASSWORD}"
            f"@{self.STOREFRONT_DB_HOST}:"
            f"{self.STOREFRONT_DB_PORT}/"
            f"{self.STOREFRONT_DB_NAME}"
        )

settings = Settings()
