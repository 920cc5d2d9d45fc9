"""Recharge-code inventory and allocation engine."""

__version__ = "0.1.0"
