"""Audit trail for registry mutations."""
