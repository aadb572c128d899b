import pytest

from cryptotxanalytics.fx_utils import apply_exchange_rate_update, convert_transaction, find_rate
from cryptotxanalytics.schemas import ExchangeRate, Settings, TokenValue, Transaction

TS = "2024-03-01T00:00:00.000Z"


def rate(src, dst, value):
    return ExchangeRate(from_currency=src, to_currency=dst, rate=value, timestamp=TS)


@pytest.fixture
def rates():
    return [rate("EURe", "USD", 1.1), rate("USDC", "USD", 1.0), rate("EURe", "GBPe", 0.85)]


@pytest.fixture
def payment():
    return Transaction(
        id="p1",
        timestamp=TS,
        value_in=TokenValue(amount=100, token="EURe"),
        txn_fee=TokenValue(amount=0.2, token="EURe"),
    )


def test_find_rate_is_exact(rates):
    assert find_rate(rates, "EURe", "USD") == 1.1
    assert find_rate(rates, "eure", "USD") is None
    assert find_rate(rates, "USD", "EURe") is None
    assert find_rate([], "EURe", "USD") is None


def test_find_rate_first_entry_wins():
    assert find_rate([rate("EURe", "USD", 1.2), rate("EURe", "USD", 1.0)], "EURe", "USD") == 1.2


def test_convert_to_usd_fills_usd_values(rates, payment):
    converted = convert_transaction(payment, rates, "USD")
    assert converted.converted_value.amount == pytest.approx(110.0)
    assert converted.converted_value.currency == "USD"
    assert converted.value_in.usd_value == pytest.approx(110.0)
    assert converted.txn_fee.usd_value == pytest.approx(0.22)
    assert converted.value_out is None
    # the original is left untouched
    assert payment.converted_value is None
    assert payment.value_in.usd_value is None


def test_convert_to_other_currency(rates, payment):
    converted = convert_transaction(payment, rates, "GBPe")
    assert converted.converted_value.amount == pytest.approx(85.0)
    assert converted.converted_value.currency == "GBPe"
    assert converted.value_in.usd_value is None


def test_no_conversion_when_already_in_target(rates, payment):
    assert convert_transaction(payment, rates, "EURe").converted_value is None


def test_missing_rate_leaves_values(payment):
    converted = convert_transaction(payment, [rate("USDC", "USD", 1.0)], "USD")
    assert converted.converted_value is None
    assert converted.value_in.usd_value is None
    assert converted.txn_fee.usd_value is None


def test_outgoing_side_gets_usd_value(rates):
    t = Transaction(id="o", timestamp=TS, value_out=TokenValue(amount=5, token="USDC"))
    converted = convert_transaction(t, rates, "USD")
    assert converted.value_out.usd_value == pytest.approx(5.0)
    assert converted.converted_value is None


def test_rate_update_replaces_pairs_and_prepends():
    settings = Settings(exchange_rates=[rate("EURe", "USD", 1.0), rate("GBPe", "USD", 1.2)])
    updated = apply_exchange_rate_update(
        settings,
        [rate("EURe", "USD", 1.1), rate("EURe", "USD", 1.3), rate("USDC", "USD", 1.0)],
        "2024-03-02T00:00:00.000Z",
    )
    assert [(r.from_currency, r.to_currency, r.rate) for r in updated.exchange_rates] == [
        ("EURe", "USD", 1.1),
        ("USDC", "USD", 1.0),
        ("GBPe", "USD", 1.2),
    ]
    assert updated.last_forex_update == "2024-03-02T00:00:00.000Z"
    assert find_rate(updated.exchange_rates, "EURe", "USD") == 1.1
    assert settings.last_forex_update is None
