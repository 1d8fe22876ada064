"""Multi-tenant real-estate CRM API."""

__version__ = "0.1.0"
