"""Endpoint configuration, record formatting and chunk sending."""
