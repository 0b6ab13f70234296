"""Domain services used by the HTTP routes."""
