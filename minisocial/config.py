from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "MiniSocial"
    VERSION: str = "0.1.0"

    # Persistence
    DATA_PATH: str = "data/data.json"

    # Credentials
    JWT_SECRET: str = "dev_secret_change_me"
    TOKEN_TTL_SECONDS: int = 7 * 24 * 3600
    BCRYPT_ROUNDS: int = 10

    # Verification
    CODE_TTL_SECONDS: int = 10 * 60
    PRIVACY_VERSION: str = "1.0"

    # Read-side limits
    NOTIFICATION_LIMIT: int = 30
    FEED_DEFAULT_LIMIT: int = 20
    FEED_MAX_LIMIT: int = 50
    SEARCH_LIMIT: int = 10

    # Outbound email (falls back to the logging notifier when incomplete)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: Optional[int] = None
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    SMTP_FROM: Optional[str] = None

    # Outbound SMS through Twilio (same fallback)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None

    NOTIFIER_WORKERS: int = 2

    LOG_LEVEL: str = "INFO"

    @property
    def smtp_configured(self) -> bool:
        return all(
            [self.SMTP_HOST, self.SMTP_PORT, self.SMTP_USER, self.SMTP_PASS, self.SMTP_FROM]
        )

    @property
    def sms_configured(self) -> bool:
        return all([self.TWILIO_ACCOUNT_SID, self.TWILIO_AUTH_TOKEN, self.TWILIO_FROM_NUMBER])

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
