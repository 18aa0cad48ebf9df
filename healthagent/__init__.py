"""Client-side host health probe and reporting agent."""

__version__ = "1.0.0"
