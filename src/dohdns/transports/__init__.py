"""Upstream DNS transports used by the default exchanger."""
