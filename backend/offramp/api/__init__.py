"""API routers package."""

from offramp.api import offramp, webhooks, swaps, payouts, deps

__all__ = [
    "offramp",
    "webhooks",
    "swaps",
    "payouts",
    "deps",
]
