"""
Remote ledger API client implementation.

Implements the LedgerStore protocol over HTTP:
- GET    /api/v1/groups/{group}/entries   candidate lookup
- POST   /api/v1/groups/{group}/entries   create entry
- DELETE /api/v1/entries/{id}             delete entry
- GET    /api/v1/about                    connection check
"""

import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.ledger_entry import CURRENCY_PRECISION, LedgerEntry
from ..state_store.base import ExistingEntry

logger = logging.getLogger(__name__)


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerAPIError(LedgerClientError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        errors: dict | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.errors = errors or {}

        error_details = []
        if errors:
            for field, msgs in errors.items():
                if isinstance(msgs, list):
                    error_details.extend([f"{field}: {m}" for m in msgs])
                else:
                    error_details.append(f"{field}: {msgs}")

        detail_str = "; ".join(error_details) if error_details else message
        super().__init__(f"Ledger API error {status_code}: {detail_str}")


class LedgerConnectionError(LedgerClientError):
    """Failed to connect to the ledger service."""

    pass


class LedgerClient:
    """
    Client for a remote ledger service.

    Features:
    - Candidate lookup for duplicate detection
    - Entry create/delete (delete is used for commit rollback)
    - Automatic retry with backoff for reads and deletes
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize ledger client.

        Args:
            base_url: Ledger service URL (e.g., "https://ledger.example.com")
            token: Bearer token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        # POST is not idempotent and is never retried
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug("API Request: %s %s", method, url)
        if json_data:
            logger.debug("Request body: %s", json.dumps(json_data, indent=2))

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise LedgerConnectionError(
                f"Failed to connect to ledger at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise LedgerConnectionError(f"Request to ledger timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise LedgerClientError(f"Request failed: {e}") from e

        logger.debug("Response status: %d", response.status_code)

        if not response.ok:
            error_body = response.text
            errors: dict = {}
            try:
                error_json = response.json()
                errors = error_json.get("errors", {}) or {}
                message = error_json.get("message", response.reason)
            except ValueError:
                message = response.reason

            logger.error("API Error %d: %s", response.status_code, message)
            if errors:
                logger.error("Error details: %s", errors)

            raise LedgerAPIError(
                status_code=response.status_code,
                message=message,
                response_body=error_body,
                errors=errors,
            )

        return response

    def test_connection(self) -> bool:
        """Test connection to the ledger API."""
        try:
            self._request("GET", "/api/v1/about")
            return True
        except LedgerClientError:
            return False

    def query_candidates(
        self,
        date_range: tuple[date, date],
        amount: Decimal,
        group_id: str,
    ) -> list[ExistingEntry]:
        """Entries of a group with this amount inside the date range."""
        start, end = date_range
        response = self._request(
            "GET",
            f"/api/v1/groups/{quote(group_id, safe='')}/entries",
            params={
                "date_from": start.isoformat(),
                "date_to": end.isoformat(),
                "amount": str(amount.quantize(CURRENCY_PRECISION)),
            },
        )

        entries: list[ExistingEntry] = []
        for item in response.json().get("data", []):
            try:
                entries.append(
                    ExistingEntry(
                        entry_id=str(item["id"]),
                        date=date.fromisoformat(str(item["date"])[:10]),
                        amount=Decimal(str(item["amount"])),
                        description=item.get("description") or "",
                        currency=item.get("currency"),
                        group_id=item.get("group_id", group_id),
                    )
                )
            except (KeyError, ValueError, InvalidOperation) as e:
                logger.warning("Skipping malformed ledger entry %r: %s", item, e)
        return entries

    def insert(self, entry: LedgerEntry) -> str:
        """Create an entry and return the id assigned by the service."""
        response = self._request(
            "POST",
            f"/api/v1/groups/{quote(entry.group_id, safe='')}/entries",
            json_data=entry.to_dict(),
        )
        entry_id = response.json().get("data", {}).get("id")
        if not entry_id:
            raise LedgerAPIError(
                status_code=response.status_code,
                message="Response did not contain an entry id",
                response_body=response.text,
            )
        logger.info("Created ledger entry id=%s", entry_id)
        return str(entry_id)

    def delete(self, entry_id: str) -> None:
        """Delete an entry. An entry that is already gone counts as deleted."""
        try:
            self._request("DELETE", f"/api/v1/entries/{quote(str(entry_id), safe='')}")
        except LedgerAPIError as e:
            if e.status_code == 404:
                logger.info("Ledger entry %s already deleted", entry_id)
                return
            raise
        logger.info("Deleted ledger entry id=%s", entry_id)
