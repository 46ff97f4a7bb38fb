import logging
from datetime import datetime, timedelta, timezone

from stockroom.logging_config import PiiRedactionFilter
from stockroom.utils.code_generator import (
    generate_batch_number,
    generate_sale_code,
    parse_stock_code,
    validate_stock_code,
)
from stockroom.utils.timezone_utils import TimezoneUtils


class TestStockCodes:

    def test_generated_codes_validate(self):
        batch_number = generate_batch_number(42)
        sale_code = generate_sale_code()
        assert batch_number.startswith("BN-")
        assert sale_code.startswith("SLD-")
        assert parse_stock_code(batch_number)['code_type'] == 'batch'
        assert parse_stock_code(sale_code)['code_type'] == 'sale'
        assert validate_stock_code(sale_code)

    def test_malformed_codes(self):
        assert not validate_stock_code(None)
        assert not validate_stock_code("SLD-")
        assert not validate_stock_code("XYZ-123")
        assert parse_stock_code("nodash") == {"prefix": None, "suffix": None, "code_type": None}


class TestTimezoneUtils:

    def test_store_today_follows_store_timezone(self, app):
        late_evening_utc = datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)
        with app.app_context():
            assert TimezoneUtils.store_today(late_evening_utc).isoformat() == "2026-03-01"
            app.config['STORE_TIMEZONE'] = 'Asia/Tokyo'
            assert TimezoneUtils.store_today(late_evening_utc).isoformat() == "2026-03-02"
            app.config['STORE_TIMEZONE'] = 'Not/AZone'
            assert TimezoneUtils.store_today(late_evening_utc).isoformat() == "2026-03-01"

    def test_api_format_treats_naive_as_utc(self):
        assert TimezoneUtils.format_datetime_for_api(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05Z"
        assert TimezoneUtils.format_datetime_for_api(None) is None

    def test_to_utc_converts_offsets(self):
        karachi = datetime(2026, 1, 10, 10, 0, tzinfo=timezone(timedelta(hours=5)))
        assert TimezoneUtils.to_utc(karachi) == datetime(2026, 1, 10, 5, 0, tzinfo=timezone.utc)
        assert TimezoneUtils.to_utc(karachi).tzinfo is timezone.utc
        assert TimezoneUtils.to_utc(datetime(2026, 1, 10, 5, 0)).tzinfo is timezone.utc
        assert TimezoneUtils.to_utc(None) is None


def test_pii_filter_redacts_tokens():
    record = logging.LogRecord("stockroom", logging.INFO, __file__, 1, "login token=%s by %s", ("abc123", "a@b.io"), None)
    PiiRedactionFilter().filter(record)
    message = record.getMessage()
    assert "abc123" not in message
    assert "a@b.io" not in message
