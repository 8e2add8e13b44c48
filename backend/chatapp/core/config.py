from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "echosecure-chat"
    app_env: str = "development"

    database_url: str = "sqlite:////data/chat.sqlite"

    LOG_LEVEL: str = "INFO"

    # JWT
    JWT_SECRET: str = "change-me"
    JWT_REFRESH_SECRET: str = "change-me-too"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Sessions / OTP
    SESSION_TTL_HOURS: int = 24
    OTP_TTL_MINUTES: int = 10
    CSRF_SECRET: str = "change-me-csrf"

    # Messages
    MESSAGE_ENCRYPTION_KEY: str = "change-me-message-key"
    EDIT_WINDOW_MINUTES: int = 5
    MAX_PINNED_MESSAGES: int = 3
    EXPIRY_SWEEP_SECONDS: float = 30.0
    WS_SEND_QUEUE_SIZE: int = 256

    # Client IP resolution (empty URL disables the lookup)
    PUBLIC_IP_LOOKUP_URL: str = "https://api.ipify.org?format=json"
    PUBLIC_IP_LOOKUP_TIMEOUT: float = 3.0

    # Cookies
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "none"

    # OTP mail (empty host -> OTP goes to the log)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_SENDER: str = "no-reply@echosecure.local"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
