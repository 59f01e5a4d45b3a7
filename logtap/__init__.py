"""Live log tailing, filtering, parsing and aggregation for the terminal."""

__version__ = '0.1.0'
