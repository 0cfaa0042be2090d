"""Spira <-> GitLab incident/issue reconciliation service"""

__version__ = "1.0.0"
