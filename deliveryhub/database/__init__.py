"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: async engine and session management
- models: SQLAlchemy ORM models for users, orders and status history
"""

# Import submodules explicitly when needed to avoid circular dependencies

__all__ = []
