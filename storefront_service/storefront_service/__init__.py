"""Storefront service: inventory-consistent order placement."""

__version__ = "0.1.0"
