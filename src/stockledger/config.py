"""Engine tunables, read from the environment.

Protean's own settings (providers, event processing) live in domain.toml;
these are the knobs of the ledger engine itself.
"""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = int(raw)
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}")
    return value


@dataclass(frozen=True)
class LedgerSettings:
    """Settings shared by the coordinator, orchestrator and reconciler."""

    max_submit_attempts: int = 3
    append_attempts: int = 3
    low_stock_recipient: str = "inventory-managers"
    alarm_recipient: str = "inventory-operators"
    page_size: int = 200
    settle_attempts: int = 5

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        return cls(
            max_submit_attempts=_env_int("STOCKLEDGER_MAX_SUBMIT_ATTEMPTS", cls.max_submit_attempts),
            append_attempts=_env_int("STOCKLEDGER_APPEND_ATTEMPTS", cls.append_attempts),
            low_stock_recipient=os.getenv("STOCKLEDGER_LOW_STOCK_RECIPIENT", cls.low_stock_recipient),
            alarm_recipient=os.getenv("STOCKLEDGER_ALARM_RECIPIENT", cls.alarm_recipient),
            page_size=_env_int("STOCKLEDGER_PAGE_SIZE", cls.page_size),
            settle_attempts=_env_int("STOCKLEDGER_SETTLE_ATTEMPTS", cls.settle_attempts),
        )
