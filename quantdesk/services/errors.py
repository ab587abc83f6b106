"""
Error taxonomy of the terminal core.

Trade rejections leave the account untouched and carry a user-facing
reason. Upstream failures are recovered locally by the synthetic feed.
"""


class TradeRejected(Exception):
    """Base class for locally rejected trade/account requests."""

    @property
    def reason(self) -> str:
        return str(self)


class ValidationError(TradeRejected):
    """Bad request shape: lot size below minimum, non-finite amount or price."""


class InsufficientFundsError(TradeRejected):
    """Cash does not cover the margin (or the withdrawal)."""


class UpstreamUnavailable(Exception):
    """Feed fetch failed, timed out or returned an unusable payload."""
