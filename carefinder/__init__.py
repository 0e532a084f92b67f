"""Healthcare provider aggregation and resolution engine."""

__version__ = "0.1.0"
