"""Oracle price aggregation and group snapshot publishing for fluxor lending groups."""

__version__ = "0.1.0"
