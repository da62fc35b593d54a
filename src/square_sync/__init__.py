"""CRM to Square card-gateway sync and provisioning engine."""

__version__ = "0.1.0"
