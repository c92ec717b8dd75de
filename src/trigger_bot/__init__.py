"""
Trigger Bot.

A keeper that watches resting trigger orders across markets and submits
the trigger transaction for every order whose oracle condition is met.
The package handles the periodic evaluation loop, in-flight deduplication,
health reporting and metrics; market data, accounts and submission are
reached through small client interfaces.
"""

__version__ = "0.1.0"
