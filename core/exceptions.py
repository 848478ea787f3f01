"""Shared exception types for core trading logic."""

from typing import Optional


class RemoteCallError(RuntimeError):
    """Raised when a ledger, pool or model call fails or is rejected."""

    def __init__(self, source: str, message: str, original: Optional[Exception] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.original = original


class TradeValidationError(ValueError):
    """Raised when a verdict or its sizing cannot become a trade."""


class InsufficientFunds(ArithmeticError):
    """Raised when fees would take an amount below zero."""

    def __init__(self, amount: int, required: int, context: str = ""):
        detail = f" ({context})" if context else ""
        super().__init__(f"amount {amount} cannot cover fees of {required}{detail}")
        self.amount = amount
        self.required = required


def checked_sub(amount: int, fees: int, context: str = "") -> int:
    """Subtract ``fees`` from ``amount`` or raise InsufficientFunds."""
    if fees > amount:
        raise InsufficientFunds(amount, fees, context)
    return amount - fees
