"""
Feature modules live under this package.

Each module owns its routes, service functions and (where needed) models, while reusing
platform primitives (auth, privileges, audit, tenant scoping, DB session).
"""
