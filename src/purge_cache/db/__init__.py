"""Database layer: engine factory and ORM models."""
