"""Live-session coordinator: room relay, session lock and transcript aggregation."""

__version__ = "0.1.0"
