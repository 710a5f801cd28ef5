"""
lore/tests/conftest.py - Shared pytest fixtures for the lore test suite.

Everything here is offline. Account IDs are synthetic but well-formed
(56 characters, leading "G"), and the fake ledger serves canned account
details from a dict so orchestrator and pipeline tests never touch Horizon.

Fixtures:
    gid           - Factory: gid("alice") -> a well-formed account ID.
    b64           - Factory: b64("text") -> base64 ManageData value.
    memory_repo   - Fresh InMemoryRepository.
    fake_ledger   - The FakeLedger class, for building canned ledgers.
"""

import base64
import threading
import time
from decimal import Decimal

import pytest

from lore.config import DEFAULT_CONFIG
from lore.ledger.horizon_client import AccountNotFoundError, LedgerError, RequestCancelledError
from lore.models import AccountDetail, Balance
from lore.storage.memory import InMemoryRepository


# ── Pytest configuration hooks ────────────────────────────────────────────────

def pytest_configure(config):
    """Register custom markers and add --run-integration CLI option support."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that call the public Horizon API (deselected by default, "
        "pass --run-integration or -m integration to enable)",
    )


def pytest_addoption(parser):
    """Add --run-integration CLI flag to enable integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that call the public Horizon API.",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed or -m integration is used."""
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        return

    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration test -- pass --run-integration or -m integration to run"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ── Builders ──────────────────────────────────────────────────────────────────

def make_account_id(label: str) -> str:
    """Well-formed account ID derived from a short label."""
    body = label.upper().replace(" ", "")
    return ("G" + body + "X" + "2" * 55)[:56]


def encode_value(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


ISSUER = DEFAULT_CONFIG.token_issuer


def mtlap(amount) -> Balance:
    return Balance(DEFAULT_CONFIG.governance_token, ISSUER, Decimal(str(amount)))


def mtlac(amount) -> Balance:
    return Balance(DEFAULT_CONFIG.company_token, ISSUER, Decimal(str(amount)))


def xlm(amount) -> Balance:
    return Balance("XLM", "", Decimal(str(amount)))


class FakeLedger:
    """
    In-process stand-in for HorizonClient.

    Args:
        details:    account_id -> AccountDetail served by fetch_account_detail.
        holders:    asset code -> holder IDs served by list_holders.
        failing:    Account IDs whose fetch raises LedgerError.
        delay_sec:  Sleep inside each fetch, to make concurrency observable.
    """

    def __init__(self, details=None, holders=None, failing=(), delay_sec=0.0):
        self.details = dict(details or {})
        self.holders = dict(holders or {})
        self.failing = set(failing)
        self.delay_sec = delay_sec
        self.fetched: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def list_holders(self, asset_code, asset_issuer, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("cancelled")
        return list(self.holders.get(asset_code, []))

    def fetch_account_detail(self, account_id, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("cancelled")
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.fetched.append(account_id)
        try:
            if self.delay_sec:
                time.sleep(self.delay_sec)
            if account_id in self.failing:
                raise LedgerError(f"boom: {account_id}")
            if account_id not in self.details:
                raise AccountNotFoundError(f"Not found: {account_id}")
            return self.details[account_id]
        finally:
            with self._lock:
                self.in_flight -= 1


def make_detail(account_id, balances=(), data=None) -> AccountDetail:
    """AccountDetail with plain-text data values (base64-encoded here)."""
    return AccountDetail(
        account_id=account_id,
        balances=list(balances),
        data={k: encode_value(v) for k, v in (data or {}).items()},
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def gid():
    return make_account_id


@pytest.fixture
def b64():
    return encode_value


@pytest.fixture
def memory_repo():
    return InMemoryRepository()


@pytest.fixture
def fake_ledger():
    return FakeLedger
