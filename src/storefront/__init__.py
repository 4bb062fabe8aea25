"""Storefront: checkout, payment settlement and fulfillment on Protean."""
