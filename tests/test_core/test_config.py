"""
Tests for application settings.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from receivables.core.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.money_tolerance == Decimal("0.01")
        assert settings.overdue_bucket_days == 15
        assert settings.settlement_category == "SETTLEMENT"
        assert settings.receivables_table == "accounts_receivable"
        assert settings.audit_log_table == "financial_logs"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("OVERDUE_BUCKET_DAYS", "30")
        monkeypatch.setenv("INSTALLMENT_PAYMENT_METHOD", " boleto ")
        settings = Settings()

        assert settings.overdue_bucket_days == 30
        assert settings.installment_payment_method == "BOLETO"

    def test_cors_origins_from_csv(self):
        settings = Settings(cors_origins="http://a.test, http://b.test")
        assert settings.cors_origins == ["http://a.test", "http://b.test"]

    @pytest.mark.parametrize("field,value", [
        ("money_tolerance", Decimal("2")),
        ("overdue_bucket_days", 0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})
