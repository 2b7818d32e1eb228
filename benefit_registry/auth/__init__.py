"""Ownership and authorization checks for benefit attachments."""
