"""Tests for utility functions."""

from datetime import datetime, timezone

import pytest

from storefront.config import PAYPAL_LIVE_URL, PAYPAL_SANDBOX_URL, Settings
from storefront.errors import ConfigurationError, OrderValidationError
from storefront.models import OrderStatus
from storefront.utils import check_list_params, format_order, generate_order_number, parse_status

from .conftest import make_order


class TestGenerateOrderNumber:
    def test_format(self):
        number = generate_order_number(datetime(2023, 12, 25, 10, 30, 45, tzinfo=timezone.utc))

        assert number.startswith("20231225103045-")
        suffix = number.split("-")[1]
        assert len(suffix) == 4
        assert suffix.isalnum() and suffix.upper() == suffix


class TestParseStatus:
    def test_case_insensitive(self):
        assert parse_status("shipped") == OrderStatus.SHIPPED

    def test_empty_means_no_filter(self):
        assert parse_status(None) is None
        assert parse_status("") is None

    def test_unknown(self):
        with pytest.raises(OrderValidationError, match="status"):
            parse_status("LOST")


class TestCheckListParams:
    def test_offset(self):
        assert check_list_params(1, 10, "created_at", "desc") == 0
        assert check_list_params(3, 25, "total", "asc") == 50

    @pytest.mark.parametrize(
        "page,limit,sort_by,sort_order",
        [
            (0, 10, "created_at", "desc"),
            (1, 0, "created_at", "desc"),
            (1, 101, "created_at", "desc"),
            (1, 10, "owner_id", "desc"),
            (1, 10, "created_at", "sideways"),
        ],
    )
    def test_rejects(self, page, limit, sort_by, sort_order):
        with pytest.raises(OrderValidationError):
            check_list_params(page, limit, sort_by, sort_order)


class TestFormatOrder:
    def test_short(self):
        order = make_order()
        line = format_order(order)

        assert order.order_number in line
        assert "PENDING" in line
        assert "154.20" in line

    def test_verbose_lists_items(self):
        text = format_order(make_order(provider_reference="PP-1"), verbose=True)

        assert "2 x Bath Towel (Sage) @ 24.50 = 49.00" in text
        assert "payment ref: PP-1" in text


class TestSettings:
    def test_defaults(self, monkeypatch, temp_dir):
        for name in ("PAYPAL_CLIENT_ID", "PAYPAL_ENVIRONMENT", "PAYPAL_TIMEOUT", "STOREFRONT_APP_URL"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("STOREFRONT_DATA_DIR", str(temp_dir))

        settings = Settings.from_env()

        assert settings.data_dir == temp_dir
        assert settings.paypal_client_id is None
        assert settings.paypal_timeout == 15.0
        assert settings.paypal_base_url == PAYPAL_SANDBOX_URL
        assert settings.app_url == "http://localhost:3000"

    def test_live_environment(self, monkeypatch):
        monkeypatch.setenv("PAYPAL_ENVIRONMENT", "live")
        monkeypatch.setenv("STOREFRONT_APP_URL", "https://shop.example/")

        settings = Settings.from_env()

        assert settings.paypal_base_url == PAYPAL_LIVE_URL
        assert settings.app_url == "https://shop.example"

    def test_bad_timeout(self, monkeypatch):
        monkeypatch.setenv("PAYPAL_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError, match="PAYPAL_TIMEOUT"):
            Settings.from_env()
