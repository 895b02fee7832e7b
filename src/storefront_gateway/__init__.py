"""Storefront integration gateway: distributor catalog, checkout and order intake."""

__version__ = "0.1.0"
