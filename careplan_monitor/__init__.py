"""Care-plan monitoring engine.

This package contains the monitoring domain models and services,
isolated from transport and storage details for easy testing and reasoning.
Concrete collaborators (HTTP, storage, notifications) live in ``adapters``.
"""
