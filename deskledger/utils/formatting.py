# deskledger/utils/formatting.py
"""Human-readable number rendering for descriptions."""


def format_amount(value: float) -> str:
    """1000.0 -> '1,000'; 1234.5 -> '1,234.5'."""
    text = f"{value:,.6f}".rstrip("0").rstrip(".")
    return text or "0"
