"""Listing registry: the lifecycle of kos listings and their facilities."""

from kosfinder.registry.listings import (
    ListingRegistry,
    parse_create_request,
    parse_update_request,
)

__all__ = ["ListingRegistry", "parse_create_request", "parse_update_request"]
