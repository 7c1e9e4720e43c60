"""gitanchor — git remote helper anchored on a ledger, stored in a block store."""

__version__ = "0.1.0"
