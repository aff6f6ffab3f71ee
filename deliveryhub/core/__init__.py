"""
Core package for shared infrastructure.

Configuration, structured logging, the error taxonomy and credential
verification used across the application.
"""
