"""Roles, capabilities and actor checks."""
