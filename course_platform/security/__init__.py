"""Authentication, capability checks, input sanitization and HTTP security middleware."""
