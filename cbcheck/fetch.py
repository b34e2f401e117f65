"""
Fetch module for the cbcheck poller.

This module issues the single fund search request against Crowd Bank and
decodes the JSON envelope into Fund records. There is no retry: any
failure is reported to the caller, and the next scheduled run tries again.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from cbcheck.utils import get_logger


# Module logger
logger = get_logger("fetch")

CROWDBANK_URL = "https://crowdbank.jp"
# status=21: funds whose offer period has not started yet
CROWDBANK_SEARCH_URL = CROWDBANK_URL + "/api/v1/funds/search?keyword=&region=&project=&status=21"

UNKNOWN_CURRENCY = "不明"
CURRENCY_LABELS = {
    "1": "日本円",
    "2": "USドル",
    "3": "AUドル",
}


def currency_label(currency_id: str) -> str:
    """Map the API's currencyId to a display label, "不明" when unrecognised."""
    return CURRENCY_LABELS.get(currency_id, UNKNOWN_CURRENCY)


class FetchError(Exception):
    """Raised when the fund search request or its decoding fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Fund:
    """
    One crowdfunding offer as returned by the search API.

    Timestamps are kept as the strings the API sends; they are only
    displayed, never compared.
    """
    id: str = ""
    name: str = ""
    subtitle: str = ""
    limit_amount: int = 0
    rate: str = ""
    description: str = ""
    url: str = ""
    region_name: str = ""
    project_name: str = ""
    open_time: str = ""
    close_time: str = ""
    limit_time: str = ""
    raise_method: str = ""
    currency_id: str = ""

    @property
    def currency(self) -> str:
        return currency_label(self.currency_id)

    @property
    def link(self) -> str:
        return CROWDBANK_URL + self.url

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fund":
        """
        Build a Fund from one item of the API's "list" array.

        Missing or null keys take the empty value.

        Raises:
            FetchError: If the item is not an object or limitAmount is not an integer.
        """
        if not isinstance(data, dict):
            raise FetchError(f"Fund entry must be an object, got {type(data).__name__}")

        limit_amount = data.get("limitAmount")
        if limit_amount is None:
            limit_amount = 0
        elif isinstance(limit_amount, bool) or not isinstance(limit_amount, int):
            raise FetchError(f"Invalid limitAmount for fund {data.get('id')}: {limit_amount!r}")

        return cls(
            id=_text(data, "id"),
            name=_text(data, "name"),
            subtitle=_text(data, "subtitle"),
            limit_amount=limit_amount,
            rate=_text(data, "rate"),
            description=_text(data, "description"),
            url=_text(data, "url"),
            region_name=_text(data, "regionName"),
            project_name=_text(data, "projectName"),
            open_time=_text(data, "openTime"),
            close_time=_text(data, "closeTime"),
            limit_time=_text(data, "limitTime"),
            raise_method=_text(data, "raiseMethod"),
            currency_id=_text(data, "currencyId"),
        )


@dataclass
class SearchResponse:
    """Decoded {"data": {"size", "total", "list"}} envelope."""
    size: int = 0
    total: int = 0
    funds: List[Fund] = field(default_factory=list)


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise FetchError(f"Invalid value for '{key}': expected a string")
    return str(value)


def parse_search_response(payload: Any) -> SearchResponse:
    """
    Decode the search API's JSON envelope.

    A missing "data" object or a null "list" yields an empty response.

    Args:
        payload: Parsed JSON body.

    Returns:
        SearchResponse with the funds in API order.

    Raises:
        FetchError: If the envelope has an unexpected shape.
    """
    if not isinstance(payload, dict):
        raise FetchError(f"Response must be a JSON object, got {type(payload).__name__}")

    data = payload.get("data")
    if data is None:
        return SearchResponse()
    if not isinstance(data, dict):
        raise FetchError("Response 'data' must be an object")

    items = data.get("list")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise FetchError("Response 'data.list' must be an array")

    try:
        size = int(data.get("size") or 0)
        total = int(data.get("total") or 0)
    except (TypeError, ValueError) as e:
        raise FetchError(f"Invalid size/total in response: {e}") from e

    return SearchResponse(
        size=size,
        total=total,
        funds=[Fund.from_dict(item) for item in items],
    )


def create_session(user_agent: str) -> requests.Session:
    """
    Create a requests session that sends the configured User-Agent.

    Args:
        user_agent: User-Agent header value from the config file.

    Returns:
        requests.Session instance.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session


def fetch_funds(session: requests.Session, url: str = CROWDBANK_SEARCH_URL) -> SearchResponse:
    """
    Fetch the current list of not-yet-open funds.

    Args:
        session: Session created by create_session.
        url: Search endpoint. Defaults to CROWDBANK_SEARCH_URL.

    Returns:
        SearchResponse with the funds in API order.

    Raises:
        FetchError: On network failure, a non-2xx status or an undecodable body.
    """
    logger.debug(f"Fetching funds from {url}")

    try:
        response = session.get(url)
    except requests.exceptions.RequestException as e:
        raise FetchError(f"Request to {url} failed: {e}") from e

    if not 200 <= response.status_code < 300:
        raise FetchError(
            f"Fund search returned HTTP {response.status_code}",
            status_code=response.status_code
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise FetchError(f"Failed to decode fund search response: {e}", status_code=response.status_code) from e

    result = parse_search_response(payload)
    logger.info(f"Fetched {len(result.funds)} fund(s) (total={result.total})")

    return result
