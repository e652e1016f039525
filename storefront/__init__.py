"""Storefront order service: catalog, order placement and status transitions."""
