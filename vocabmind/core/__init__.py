"""Configuration, errors, resilience and the search service."""
