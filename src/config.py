from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60
    public_app_url: str = "http://localhost:3000"
    invitation_expiry_days: int = 365
    invitation_max_uses: int = 1
    invitation_allow_legacy_status_lookup: bool = False
    password_reset_expiry_minutes: int = 60
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
