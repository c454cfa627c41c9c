"""Storefront backend: orders, payments, returns and shipments"""

__version__ = "1.0.0"
