"""audit/ -- Append-only audit trail and the per-route recorder.

Layer rule: audit/ may import from core/, auth/ and rbac/ (models only).
Nothing outside api/ imports from audit/.
"""
