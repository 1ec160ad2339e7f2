"""
Feature modules live under this package.

Each module owns its blueprint (admin.py) and its calls to the remote API
(service.py), while reusing platform primitives (auth, RBAC, audit, API client).
"""
