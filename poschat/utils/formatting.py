"""Money formatting for customer-facing tool output."""

CURRENCY_SYMBOLS = {
    "SGD": "S$",
    "USD": "$",
    "AUD": "A$",
    "EUR": "€",
    "GBP": "£",
    "MYR": "RM",
}


def format_currency(amount: float, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get((currency or "").upper())
    if symbol:
        return f"{symbol}{amount:.2f}"
    return f"{amount:.2f} {currency}"
