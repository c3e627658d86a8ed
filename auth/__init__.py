"""auth/ -- Credential verification and identity resolution for AdminHub.

Layer rule: auth/ imports from core/ and, for the gate only, rbac/.
It does NOT import from api/ or audit/.
api/ imports from auth/, not the other way around.
"""
