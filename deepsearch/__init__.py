"""Deep search: an agentic web research assistant."""

__version__ = "0.1.0"
