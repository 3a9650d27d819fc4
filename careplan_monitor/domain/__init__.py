"""Domain models for care-plan monitoring."""
