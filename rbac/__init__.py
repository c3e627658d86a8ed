"""rbac/ -- Modules, permissions, roles and profiles, and the graph that joins them.

Layer rule: rbac/ imports from core/ and from auth/ (user store and models).
It does NOT import from api/ or audit/.
"""
