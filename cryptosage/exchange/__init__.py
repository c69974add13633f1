"""Exchange account and trading-bot integrations."""

from .three_commas import Account, AccountBalance, ThreeCommasClient, sign_body

__all__ = ["Account", "AccountBalance", "ThreeCommasClient", "sign_body"]
