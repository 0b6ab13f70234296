"""Configuration, security primitives and shared dependencies."""
