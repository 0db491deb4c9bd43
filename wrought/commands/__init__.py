"""Implementations behind the wrought CLI commands."""
