"""Prefix router: dispatch, proxy cache and forwarding handlers."""
