"""Configuration for message pipeline services."""
