"""MyStore accounts API."""
