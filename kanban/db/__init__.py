"""Persistence layer: ORM models, engine and session helpers, the request
store and department seeding."""
