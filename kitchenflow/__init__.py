"""Kitchenflow: order-to-kitchen ticket workflow with inventory-gated availability."""

__version__ = "1.0.0"
