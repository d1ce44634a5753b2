"""Storefront cart, checkout and order reconciliation."""
