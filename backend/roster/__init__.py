"""Session roster engine: scheduled sessions, waiting queues and role-capped rosters."""

__version__ = "0.1.0"
