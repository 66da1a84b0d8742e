"""Course platform backend.

Serves the course catalogue, comments, admin management endpoints and the
WooCommerce order webhook that provisions accounts and enrollments.
"""

__version__ = "0.1.0"
