"""
Horizon API Client - Stellar ledger reads for the lore account sync.

Two operations are needed:

    list_holders(code, issuer)   GET /accounts?asset=CODE:ISSUER
    fetch_account_detail(id)     GET /accounts/{id}

Holder listing pages with an ascending cursor (each record's paging_token)
and stops at the first page shorter than the page limit.

Rate limiting (429) and server errors (5xx) are retried with exponential
backoff, as are connection errors and read timeouts. A 404 raises
AccountNotFoundError; any other failure raises LedgerError. Errors always
propagate; the orchestrator decides how many failed accounts a batch can
tolerate.

Every request first checks the caller's cancel event so a cancelled sync
stops issuing new HTTP calls. Uses only Python stdlib (urllib.request).

Reference: https://developers.stellar.org/docs/data/apis/horizon/api-reference
"""
import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from lore.config import DEFAULT_CONFIG
from lore.models import NATIVE_ASSET_CODE, AccountDetail, Balance

logger = logging.getLogger(__name__)

HORIZON_USER_AGENT = "lore/0.1 (+https://github.com/mtlprog/lore)"

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class LedgerError(Exception):
    """A ledger read failed (network, HTTP status, or malformed response)."""


class AccountNotFoundError(LedgerError):
    """Horizon returned 404 for an account."""


class RequestCancelledError(LedgerError):
    """The request was not issued because the caller cancelled the sync."""


def parse_balances(raw_balances: list[dict[str, Any]]) -> list[Balance]:
    """Convert Horizon balance objects into Balance records.

    Native balances become ("XLM", ""). Liquidity-pool share balances carry
    no asset code and are skipped.

    Args:
        raw_balances: The "balances" array of a Horizon account response.

    Returns:
        Balances in response order.

    Raises:
        LedgerError: If a balance amount is not a decimal string.
    """
    balances: list[Balance] = []
    for item in raw_balances:
        asset_type = item.get("asset_type", "")
        if asset_type == "liquidity_pool_shares":
            continue
        try:
            amount = Decimal(item.get("balance", "0"))
        except InvalidOperation as exc:
            raise LedgerError(f"Malformed balance amount: {item!r}") from exc
        if asset_type == "native":
            balances.append(Balance(NATIVE_ASSET_CODE, "", amount))
        else:
            balances.append(Balance(
                asset_code=item.get("asset_code", ""),
                asset_issuer=item.get("asset_issuer", ""),
                amount=amount,
            ))
    return balances


class HorizonClient:
    """Blocking Horizon REST client, safe to share across worker threads.

    Holds no mutable state beyond its settings; each call opens its own
    connection via urllib.
    """

    def __init__(
        self,
        horizon_url: str = DEFAULT_CONFIG.horizon_url,
        timeout: float = DEFAULT_CONFIG.request_timeout_sec,
        retries: int = DEFAULT_CONFIG.request_retries,
        page_limit: int = DEFAULT_CONFIG.horizon_page_limit,
        backoff_sec: float = 1.0,
    ) -> None:
        self.horizon_url = horizon_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.page_limit = page_limit
        self.backoff_sec = backoff_sec

    def _get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict:
        """GET a Horizon path and return the parsed JSON body.

        Args:
            path:          API path starting with '/', e.g. '/accounts/G...'.
            params:        Optional query parameters.
            cancel_event:  Checked before every attempt and during backoff.

        Returns:
            Parsed JSON object.

        Raises:
            RequestCancelledError: cancel_event was set.
            AccountNotFoundError:  HTTP 404.
            LedgerError:           Any other failure, or retries exhausted.
        """
        url = f"{self.horizon_url}{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        headers = {
            "Accept": "application/hal+json",
            "User-Agent": HORIZON_USER_AGENT,
        }

        attempt = 0
        backoff = self.backoff_sec

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(f"Cancelled before GET {path}")
            try:
                req = urllib.request.Request(url, headers=headers)
                with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                    body = resp.read()
                    return json.loads(body)
            except urllib.error.HTTPError as exc:
                if exc.code == 404:
                    raise AccountNotFoundError(f"Not found: {path}") from exc
                if exc.code not in _RETRYABLE_STATUS or attempt >= self.retries:
                    raise LedgerError(f"Horizon HTTP {exc.code} for {path}") from exc
                logger.warning(
                    "Horizon HTTP %d for %s; retrying in %.1fs (attempt %d/%d)",
                    exc.code, path, backoff, attempt + 1, self.retries,
                )
            except (urllib.error.URLError, TimeoutError) as exc:
                # A read timeout surfaces as a bare TimeoutError, which has no reason.
                reason = getattr(exc, "reason", exc)
                if attempt >= self.retries:
                    raise LedgerError(f"Horizon network error for {path}: {reason}") from exc
                logger.warning(
                    "Horizon network error for %s: %s; retrying in %.1fs",
                    path, reason, backoff,
                )
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise LedgerError(f"Malformed Horizon response for {path}: {exc}") from exc

            if cancel_event is not None:
                if cancel_event.wait(backoff):
                    raise RequestCancelledError(f"Cancelled while retrying GET {path}")
            else:
                time.sleep(backoff)
            backoff *= 2
            attempt += 1

    def list_holders(
        self,
        asset_code: str,
        asset_issuer: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[str]:
        """List every account holding a trustline to (asset_code, asset_issuer).

        Pages through /accounts?asset=CODE:ISSUER in ascending cursor order
        until a page returns fewer than page_limit records.

        Args:
            asset_code:    Asset code, e.g. "MTLAP".
            asset_issuer:  Issuer account ID.
            cancel_event:  Optional cancellation signal.

        Returns:
            Account IDs in ledger cursor order.
        """
        holders: list[str] = []
        cursor = ""
        pages = 0

        while True:
            params: dict[str, Any] = {
                "asset": f"{asset_code}:{asset_issuer}",
                "limit": self.page_limit,
                "order": "asc",
            }
            if cursor:
                params["cursor"] = cursor

            data = self._get("/accounts", params, cancel_event)
            records = data.get("_embedded", {}).get("records", [])
            pages += 1

            for record in records:
                holders.append(record["account_id"])
            if records:
                cursor = records[-1].get("paging_token") or records[-1]["account_id"]

            if len(records) < self.page_limit:
                break

        logger.info(
            "Horizon: %d holders of %s (%d page(s))", len(holders), asset_code, pages
        )
        return holders

    def fetch_account_detail(
        self,
        account_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> AccountDetail:
        """Fetch balances and raw ManageData for one account.

        Raises:
            AccountNotFoundError: The account does not exist (merged or never funded).
            LedgerError:          Any other failure.
        """
        data = self._get(
            f"/accounts/{urllib.parse.quote(account_id)}", cancel_event=cancel_event
        )
        return AccountDetail(
            account_id=data.get("account_id", account_id),
            balances=parse_balances(data.get("balances", [])),
            data=dict(data.get("data") or {}),
        )
