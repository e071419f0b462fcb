"""Route modules for the trellis HTTP API."""
