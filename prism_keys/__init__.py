"""Prism key service: Discord-gated issuance and validation of tiered access keys."""

__version__ = "1.0.0"
