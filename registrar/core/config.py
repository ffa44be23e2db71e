from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Post-closure work (audit, notifications) runs on a bounded task pool
    side_effect_concurrency: int = Field(8, alias="SIDE_EFFECT_CONCURRENCY", ge=1)
    closure_requires_justification: bool = Field(False, alias="CLOSURE_REQUIRES_JUSTIFICATION")

    # Default grading policy; institutions with other thresholds plug in their own policy
    pass_mark: float = Field(10.0, alias="PASS_MARK")
    allowed_failed_subjects: int = Field(0, alias="ALLOWED_FAILED_SUBJECTS", ge=0)
    # Below this share of attended lessons a subject is recorded as FAILED in the history
    min_attendance_rate: float = Field(0.75, alias="MIN_ATTENDANCE_RATE", ge=0.0, le=1.0)

    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    smtp_from_email: Optional[str] = Field(None, alias="SMTP_FROM_EMAIL")
    smtp_from_name: str = Field("Registrar", alias="SMTP_FROM_NAME")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
