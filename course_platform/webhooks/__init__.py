"""Inbound WooCommerce order webhooks.

Each delivery is signature-verified, deduplicated by order id in the data
store, and turned into accounts and enrollments.
"""
