"""
Snapshot retention and scheduling service for per-tenant CouchDB databases.
"""

__version__ = "1.0.0"
