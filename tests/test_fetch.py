"""
Tests for the fetch module.

Tests cover:
- Decoding the search response envelope
- Fund field mapping and defaults
- Currency labels
- HTTP, network and JSON error handling
- Session configuration
"""

import json
from unittest.mock import Mock

import pytest
import requests

from cbcheck.fetch import (
    CROWDBANK_SEARCH_URL,
    CROWDBANK_URL,
    FetchError,
    Fund,
    SearchResponse,
    create_session,
    currency_label,
    fetch_funds,
    parse_search_response,
)


@pytest.fixture
def fund_payload():
    """One fund item as the search API returns it."""
    return {
        "id": "F1",
        "name": "Fund A",
        "subtitle": "Solar farm in Peru",
        "limitAmount": 50000000,
        "rate": "6.5",
        "description": "**Secured** by a first-ranking mortgage",
        "url": "/funds/F1",
        "regionName": "Peru",
        "projectName": "Renewable energy",
        "openTime": "2024-05-01 12:00",
        "closeTime": "2024-05-15 15:00",
        "limitTime": "2025-05-31",
        "raiseMethod": "抽選",
        "currencyId": "1",
    }


@pytest.fixture
def search_payload(fund_payload):
    """Full search response envelope with one fund."""
    return {"data": {"size": 1, "total": 1, "list": [fund_payload]}}


def make_response(status_code=200, payload=None, text=None):
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    if text is not None:
        response.json.side_effect = json.JSONDecodeError("Expecting value", text, 0)
        response.text = text
    else:
        response.json.return_value = payload
        response.text = json.dumps(payload)
    return response


class TestCurrencyLabel:
    """Tests for the currencyId to label mapping."""

    def test_known_codes(self):
        """Test the three recognised currency codes."""
        assert currency_label("1") == "日本円"
        assert currency_label("2") == "USドル"
        assert currency_label("3") == "AUドル"

    @pytest.mark.parametrize("code", ["9", "", "abc", "0", " 1"])
    def test_unknown_codes(self, code):
        """Test that any other code maps to the unknown label."""
        assert currency_label(code) == "不明"

    def test_fund_currency_property(self):
        """Test that Fund.currency uses the same mapping."""
        assert Fund(currency_id="2").currency == "USドル"
        assert Fund(currency_id="7").currency == "不明"


class TestFundFromDict:
    """Tests for building a Fund from an API item."""

    def test_maps_camel_case_keys(self, fund_payload):
        """Test that every API key lands on the right attribute."""
        fund = Fund.from_dict(fund_payload)

        assert fund.id == "F1"
        assert fund.name == "Fund A"
        assert fund.subtitle == "Solar farm in Peru"
        assert fund.limit_amount == 50000000
        assert fund.rate == "6.5"
        assert fund.url == "/funds/F1"
        assert fund.region_name == "Peru"
        assert fund.project_name == "Renewable energy"
        assert fund.open_time == "2024-05-01 12:00"
        assert fund.close_time == "2024-05-15 15:00"
        assert fund.limit_time == "2025-05-31"
        assert fund.raise_method == "抽選"
        assert fund.currency_id == "1"

    def test_missing_and_null_keys(self):
        """Test that missing or null keys take empty values."""
        fund = Fund.from_dict({"id": "F2", "name": None})

        assert fund.id == "F2"
        assert fund.name == ""
        assert fund.limit_amount == 0
        assert fund.currency_id == ""

    def test_link(self, fund_payload):
        """Test that the link joins the base URL and relative path."""
        fund = Fund.from_dict(fund_payload)

        assert fund.link == CROWDBANK_URL + "/funds/F1"

    def test_rate_kept_as_text(self):
        """Test that non-numeric rate notation is kept verbatim."""
        fund = Fund.from_dict({"id": "F3", "rate": "4.0~6.0"})

        assert fund.rate == "4.0~6.0"

    def test_invalid_limit_amount(self):
        """Test that a non-integer limitAmount raises FetchError."""
        with pytest.raises(FetchError, match="limitAmount"):
            Fund.from_dict({"id": "F4", "limitAmount": "a lot"})

    def test_non_object_entry(self):
        """Test that a list entry that is not an object raises FetchError."""
        with pytest.raises(FetchError):
            Fund.from_dict("F5")


class TestParseSearchResponse:
    """Tests for decoding the response envelope."""

    def test_envelope(self, search_payload):
        """Test size, total and fund list are decoded."""
        result = parse_search_response(search_payload)

        assert result.size == 1
        assert result.total == 1
        assert [f.id for f in result.funds] == ["F1"]

    def test_preserves_api_order(self):
        """Test that funds keep the order the API returned."""
        payload = {"data": {"list": [{"id": "B"}, {"id": "A"}, {"id": "C"}]}}

        result = parse_search_response(payload)

        assert [f.id for f in result.funds] == ["B", "A", "C"]

    def test_missing_data(self):
        """Test that a missing data object yields no funds."""
        assert parse_search_response({}) == SearchResponse()

    def test_null_list(self):
        """Test that a null list yields no funds."""
        result = parse_search_response({"data": {"size": 0, "total": 0, "list": None}})

        assert result.funds == []

    def test_non_object_body(self):
        """Test that a JSON array body is rejected."""
        with pytest.raises(FetchError, match="JSON object"):
            parse_search_response([1, 2, 3])

    def test_list_wrong_type(self):
        """Test that a non-array list is rejected."""
        with pytest.raises(FetchError, match="array"):
            parse_search_response({"data": {"list": {"id": "F1"}}})


class TestCreateSession:
    """Tests for session creation."""

    def test_user_agent_header(self):
        """Test that the configured User-Agent is sent."""
        session = create_session("cbcheck-test/1.0")

        assert session.headers["User-Agent"] == "cbcheck-test/1.0"

    def test_no_retry_adapter(self):
        """Test that the session uses the default adapters without retries."""
        session = create_session("ua")

        assert session.get_adapter("https://crowdbank.jp").max_retries.total == 0


class TestFetchFunds:
    """Tests for the fund search request."""

    def test_successful_fetch(self, search_payload):
        """Test a 200 response is decoded into funds."""
        session = Mock()
        session.get.return_value = make_response(200, search_payload)

        result = fetch_funds(session)

        session.get.assert_called_once_with(CROWDBANK_SEARCH_URL)
        assert len(result.funds) == 1
        assert result.funds[0].name == "Fund A"

    def test_search_url_selects_pre_open_funds(self):
        """Test the fixed search endpoint and its status filter."""
        assert CROWDBANK_SEARCH_URL == (
            "https://crowdbank.jp/api/v1/funds/search?keyword=&region=&project=&status=21"
        )

    def test_http_error_status(self):
        """Test that a non-2xx status raises FetchError with the code."""
        session = Mock()
        session.get.return_value = make_response(503, {"error": "maintenance"})

        with pytest.raises(FetchError) as exc_info:
            fetch_funds(session)

        assert exc_info.value.status_code == 503

    def test_connection_error(self):
        """Test that network failures raise FetchError."""
        session = Mock()
        session.get.side_effect = requests.exceptions.ConnectionError("DNS lookup failed")

        with pytest.raises(FetchError, match="DNS lookup failed"):
            fetch_funds(session)

    def test_malformed_json(self):
        """Test that an undecodable body raises FetchError."""
        session = Mock()
        session.get.return_value = make_response(200, text="<html>oops</html>")

        with pytest.raises(FetchError, match="decode"):
            fetch_funds(session)
