"""Tests for the featured company directory."""

from __future__ import annotations

import pytest

from tariffs import companies


class TestLookup:
    def test_by_ticker_case_insensitive(self) -> None:
        assert companies.by_ticker("nke").name == "Nike"
        assert companies.by_ticker("ZZZZ") is None

    def test_search_matches_ticker_or_name(self) -> None:
        tickers = [c.ticker for c in companies.search("motor")]
        assert tickers == ["F", "GM"]

    def test_search_limit_and_blank(self) -> None:
        assert len(companies.search("a", limit=3)) == 3
        assert companies.search("  ") == []


class TestResolve:
    def test_exact_ticker_before_name(self) -> None:
        assert companies.resolve("ma").ticker == "MA"

    def test_exact_name(self) -> None:
        assert companies.resolve("Home Depot").ticker == "HD"

    def test_partial_name_needs_three_chars(self) -> None:
        assert companies.resolve("cat").ticker == "CAT"
        assert companies.resolve("broad").ticker == "AVGO"
        assert companies.resolve("oc") is None


class TestCleanCompanyName:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("NIKE, INC.", "Nike"),
            ("Microsoft Corp", "Microsoft"),
            ("Lululemon Athletica Inc.", "Lululemon"),
            ("IBM", "IBM"),
        ],
    )
    def test_clean(self, raw, expected) -> None:
        assert companies.clean_company_name(raw) == expected


class TestIdentify:
    def test_featured(self) -> None:
        assert companies.identify("AAPL").name == "Apple"

    def test_from_filing_metadata(self) -> None:
        company = companies.identify("lulu", {"name": "LULULEMON ATHLETICA INC.", "ticker": "LULU"})
        assert company.ticker == "LULU"
        assert company.name == "Lululemon"
        assert company.exposure is None

    def test_without_metadata(self) -> None:
        company = companies.identify("xyz")
        assert (company.ticker, company.name) == ("XYZ", "xyz")
