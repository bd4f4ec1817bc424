import datetime
from decimal import Decimal

import pytest

from tradeledger.config import LedgerConfig, parse_date

ENV_NAMES = ("TRADELEDGER_INITIAL_AMOUNT", "TRADELEDGER_SINCE", "TRADELEDGER_LOG_LEVEL")


def test_defaults():
    assert LedgerConfig.from_mapping({}) == LedgerConfig(
        initial_amount=Decimal(0), since=None, log_level="INFO"
    )


def test_from_mapping():
    config = LedgerConfig.from_mapping(
        {
            "TRADELEDGER_INITIAL_AMOUNT": "25000.50",
            "TRADELEDGER_SINCE": "2025-01-01",
            "TRADELEDGER_LOG_LEVEL": "debug",
            "UNRELATED": "x",
        }
    )

    assert config.initial_amount == Decimal("25000.50")
    assert config.since == datetime.date(2025, 1, 1)
    assert config.log_level == "DEBUG"


def test_empty_values_use_defaults():
    # dotenv yields None for bare keys
    config = LedgerConfig.from_mapping(
        {"TRADELEDGER_INITIAL_AMOUNT": "", "TRADELEDGER_SINCE": None}
    )
    assert config == LedgerConfig()


def test_invalid_values():
    with pytest.raises(ValueError, match="TRADELEDGER_INITIAL_AMOUNT"):
        LedgerConfig.from_mapping({"TRADELEDGER_INITIAL_AMOUNT": "lots"})

    with pytest.raises(ValueError, match="TRADELEDGER_SINCE"):
        LedgerConfig.from_mapping({"TRADELEDGER_SINCE": "01/01/2025"})

    with pytest.raises(ValueError, match="--since"):
        parse_date("2025-13-01", "--since")


def test_load_environment_overrides_dotenv(tmp_path, monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)

    dotenv = tmp_path / ".env.tradeledger"
    dotenv.write_text("TRADELEDGER_INITIAL_AMOUNT=1000\nTRADELEDGER_SINCE=2025-06-01\n")

    monkeypatch.setenv("TRADELEDGER_INITIAL_AMOUNT", "2500")

    config = LedgerConfig.load(str(dotenv))

    assert config.initial_amount == Decimal(2500)
    assert config.since == datetime.date(2025, 6, 1)


def test_load_without_dotenv(tmp_path, monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)

    assert LedgerConfig.load(str(tmp_path / "missing")) == LedgerConfig()
