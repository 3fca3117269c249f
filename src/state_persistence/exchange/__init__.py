"""Import/export exchange collaborators."""

from state_persistence.exchange.base import ExchangeInterface
from state_persistence.exchange.local import LocalExchange, sanitize_filename

__all__ = [
    "ExchangeInterface",
    "LocalExchange",
    "sanitize_filename",
]
