"""Application configuration and settings."""

from decimal import Decimal
from functools import lru_cache
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="receivables")
    service_version: str = Field(default="1.0.0")
    port: int = Field(default=8000)
    host: str = Field(default="::")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    environment: str = Field(default="development")

    # Supabase Configuration
    supabase_url: Optional[str] = Field(None)
    supabase_key: Optional[str] = Field(None)

    # Table names
    receivables_table: str = Field(default="accounts_receivable")
    payables_table: str = Field(default="accounts_payable")
    settlements_table: str = Field(default="settlements")
    collection_history_table: str = Field(default="collection_history")
    audit_log_table: str = Field(default="financial_logs")

    # Business Rules Configuration
    money_tolerance: Decimal = Field(default=Decimal("0.01"))
    overdue_bucket_days: int = Field(default=15)
    settlement_category: str = Field(default="SETTLEMENT")
    installment_payment_method: str = Field(default="PIX")
    settlement_id_prefix: str = Field(default="AC")

    # Contract document collaborator
    document_service_url: Optional[str] = Field(None)
    document_service_timeout: int = Field(default=30)

    # HTTP
    enable_cors: bool = Field(default=True)
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("money_tolerance")
    @classmethod
    def validate_money_tolerance(cls, v: Decimal) -> Decimal:
        if v < 0 or v > Decimal("1"):
            raise ValueError("Money tolerance must be between 0.00 and 1.00")
        return v

    @field_validator("overdue_bucket_days")
    @classmethod
    def validate_bucket_days(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Overdue bucket threshold must be at least one day")
        return v

    @field_validator("settlement_category", "installment_payment_method", "settlement_id_prefix")
    @classmethod
    def upper_case_codes(cls, v: str) -> str:
        return v.strip().upper()

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
