from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "meterpay"
    version: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_DATABASE_DSN: str = "sqlite:////tmp/meterpay.db"

    # Billing backend selection. Empty means "first configured provider wins".
    BILLING_PROVIDER: str = ""

    # Local ledger provider (entitlements served from our own tables)
    local_billing_enabled: bool = True

    # Autumn settings
    autumn_secret_key: str = ""
    autumn_base_url: str = "https://api.useautumn.com/v1"

    # Stripe settings
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_connect_webhook_secret: str = ""
    stripe_billing_portal_return_url: str = ""

    # Marketplace (connected accounts)
    application_fee_percent: float = 5.0
    onboarding_link_ttl_seconds: int = 300
    connect_refresh_url: str = "http://localhost:3000/connect/refresh"
    connect_return_url: str = "http://localhost:3000/connect/return"
    default_currency: str = "usd"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Owners allowed to see and replay every owner's payment events
    OPERATOR_OWNER_IDS: str = ""

    @property
    def autumn_configured(self) -> bool:
        return bool(self.autumn_secret_key)

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_api_key)

    @property
    def operator_owner_ids(self) -> set[str]:
        return {o.strip() for o in self.OPERATOR_OWNER_IDS.split(",") if o.strip()}


settings = Settings()
