"""Database engine, declarative base and storage error translation."""
