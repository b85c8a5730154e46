"""
Feature modules live under this package.

Each module owns its routes, templates and service rules, and reuses the
platform primitives (auth, RBAC, audit, mail, storage, DB session).
"""
