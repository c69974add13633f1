"""Portfolio ledger, market data and order book services for CryptoSage."""

__version__ = "0.1.0"
