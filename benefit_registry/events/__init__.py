"""Notifications emitted by the registry and their outbound delivery."""
