# snapshot_service/routers/__init__.py
"""
API routers for the admin surface.
"""
