"""Featured company directory and name resolution."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Company:
    ticker: str
    name: str
    sector: str | None = None
    exposure: str | None = None  # high / moderate / low
    domain: str | None = None


FEATURED_COMPANIES: list[Company] = [
    # High exposure: manufacturing / consumer
    Company("AAPL", "Apple", "Technology", "high", "apple.com"),
    Company("NKE", "Nike", "Consumer Discretionary", "high", "nike.com"),
    Company("TSLA", "Tesla", "Consumer Discretionary", "high", "tesla.com"),
    Company("F", "Ford Motor", "Consumer Discretionary", "high", "ford.com"),
    Company("GM", "General Motors", "Consumer Discretionary", "high", "gm.com"),
    Company("CAT", "Caterpillar", "Industrials", "high", "cat.com"),
    Company("MMM", "3M", "Industrials", "high", "3m.com"),
    Company("DE", "Deere & Co", "Industrials", "high", "deere.com"),
    Company("QCOM", "Qualcomm", "Technology", "high", "qualcomm.com"),
    Company("WMT", "Walmart", "Consumer Staples", "high", "walmart.com"),
    Company("TGT", "Target", "Consumer Discretionary", "high", "target.com"),
    Company("HD", "Home Depot", "Consumer Discretionary", "high", "homedepot.com"),
    Company("LOW", "Lowe's", "Consumer Discretionary", "high", "lowes.com"),
    Company("BA", "Boeing", "Industrials", "high", "boeing.com"),
    Company("GE", "GE Aerospace", "Industrials", "high", "ge.com"),
    # Moderate exposure: tech / mixed
    Company("MSFT", "Microsoft", "Technology", "moderate", "microsoft.com"),
    Company("GOOGL", "Alphabet", "Communication Services", "moderate", "google.com"),
    Company("META", "Meta Platforms", "Communication Services", "moderate", "meta.com"),
    Company("AMZN", "Amazon", "Consumer Discretionary", "moderate", "amazon.com"),
    Company("NVDA", "NVIDIA", "Technology", "moderate", "nvidia.com"),
    Company("AVGO", "Broadcom", "Technology", "moderate", "broadcom.com"),
    Company("INTC", "Intel", "Technology", "moderate", "intel.com"),
    Company("AMD", "AMD", "Technology", "moderate", "amd.com"),
    Company("CRM", "Salesforce", "Technology", "low", "salesforce.com"),
    Company("ORCL", "Oracle", "Technology", "low", "oracle.com"),
    Company("PG", "Procter & Gamble", "Consumer Staples", "moderate", "pg.com"),
    Company("KO", "Coca-Cola", "Consumer Staples", "moderate", "coca-cola.com"),
    Company("PEP", "PepsiCo", "Consumer Staples", "moderate", "pepsico.com"),
    Company("COST", "Costco", "Consumer Staples", "moderate", "costco.com"),
    Company("MCD", "McDonald's", "Consumer Discretionary", "moderate", "mcdonalds.com"),
    # Low exposure: services / domestic
    Company("JPM", "JPMorgan Chase", "Financials", "low", "jpmorganchase.com"),
    Company("BAC", "Bank of America", "Financials", "low", "bankofamerica.com"),
    Company("GS", "Goldman Sachs", "Financials", "low", "goldmansachs.com"),
    Company("UNH", "UnitedHealth", "Healthcare", "low", "unitedhealthgroup.com"),
    Company("JNJ", "Johnson & Johnson", "Healthcare", "moderate", "jnj.com"),
    Company("PFE", "Pfizer", "Healthcare", "moderate", "pfizer.com"),
    Company("ABBV", "AbbVie", "Healthcare", "low", "abbvie.com"),
    Company("LLY", "Eli Lilly", "Healthcare", "low", "lilly.com"),
    Company("V", "Visa", "Financials", "low", "visa.com"),
    Company("MA", "Mastercard", "Financials", "low", "mastercard.com"),
]

# Corporate suffixes dropped from filing-metadata company names
_SUFFIX_RE = re.compile(
    r"[,.]?\s*(&\s*)?\b(Inc|Corp|Ltd|LLC|Co|Company|Holdings|Group|plc|"
    r"Automotive|Technologies|Platforms|Global|Athletica)\b\.?",
    re.IGNORECASE,
)


def by_ticker(ticker: str) -> Company | None:
    t = ticker.lower()
    return next((c for c in FEATURED_COMPANIES if c.ticker.lower() == t), None)


def search(query: str, limit: int | None = None) -> list[Company]:
    """Featured companies whose ticker or name contains *query*."""
    q = query.lower().strip()
    if not q:
        return []
    matches = [c for c in FEATURED_COMPANIES if q in c.ticker.lower() or q in c.name.lower()]
    return matches[:limit] if limit else matches


def resolve(identifier: str) -> Company | None:
    """Exact ticker, then exact name, then (for 3+ chars) partial name match."""
    q = identifier.lower().strip()
    if not q:
        return None
    for c in FEATURED_COMPANIES:
        if c.ticker.lower() == q:
            return c
    for c in FEATURED_COMPANIES:
        if c.name.lower() == q:
            return c
    if len(q) > 2:
        return next((c for c in FEATURED_COMPANIES if q in c.name.lower()), None)
    return None


def clean_company_name(raw: str) -> str:
    """Turn ``"NIKE, INC."`` style filer names into ``"Nike"``."""
    cleaned = _SUFFIX_RE.sub("", raw)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if cleaned == cleaned.upper() and len(cleaned) > 3:
        cleaned = re.sub(r"\b\w", lambda m: m.group(0).upper(), cleaned.lower())
    return cleaned


def identify(identifier: str, filing_metadata: dict | None = None) -> Company:
    """Resolve a featured company, else name one from the first filing's metadata."""
    company = resolve(identifier)
    if company:
        return company
    meta = filing_metadata or {}
    name = meta.get("name")
    ticker = meta.get("ticker")
    return Company(
        ticker=ticker if isinstance(ticker, str) and ticker else identifier.upper(),
        name=clean_company_name(name) if isinstance(name, str) and name else identifier,
    )
