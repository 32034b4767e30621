"""Expense intake: receipts, invoices and chat messages to structured expenses."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("expense-intake")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
