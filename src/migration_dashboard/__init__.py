"""Migration progress aggregation for SPAs and microservices."""

__version__ = "0.1.0"
