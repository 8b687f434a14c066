"""
clusteval extension registry.

Discovers extension artifacts and configuration files in a repository
directory, loads them and keeps them registered while they change.
"""

__version__ = "1.0.0"
