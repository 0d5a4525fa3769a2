"""Local synchronization and completion engine for a Supabase-backed curriculum."""

__version__ = "0.1.0"
