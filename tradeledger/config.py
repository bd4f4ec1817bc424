"""Runtime settings read from `.env.tradeledger` and the environment.

Environment variables win over the dotenv file:

    TRADELEDGER_INITIAL_AMOUNT=25000
    TRADELEDGER_SINCE=2025-01-01
    TRADELEDGER_LOG_LEVEL=DEBUG
"""

import datetime
import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import dotenv_values

from .models import ZERO

DOTENV_PATH = ".env.tradeledger"


@dataclass(slots=True, frozen=True)
class LedgerConfig:
    initial_amount: Decimal = ZERO
    since: datetime.date | None = None
    log_level: str = "INFO"

    @classmethod
    def load(cls, dotenv_path: str = DOTENV_PATH) -> "LedgerConfig":
        return cls.from_mapping({**dotenv_values(dotenv_path), **os.environ})

    @classmethod
    def from_mapping(cls, env: Mapping[str, str | None]) -> "LedgerConfig":
        initial = ZERO
        if raw := env.get("TRADELEDGER_INITIAL_AMOUNT"):
            try:
                initial = Decimal(raw)
            except InvalidOperation:
                raise ValueError(
                    f"TRADELEDGER_INITIAL_AMOUNT must be a number, got {raw!r}"
                ) from None

        since = None
        if raw := env.get("TRADELEDGER_SINCE"):
            since = parse_date(raw, "TRADELEDGER_SINCE")

        return cls(
            initial_amount=initial,
            since=since,
            log_level=(env.get("TRADELEDGER_LOG_LEVEL") or "INFO").upper(),
        )


def parse_date(raw: str, name: str = "date") -> datetime.date:
    try:
        return datetime.date.fromisoformat(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be in YYYY-MM-DD format, got {raw!r}") from None
