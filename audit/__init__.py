"""audit/ -- Append-only audit trail of mutating actions.

Layer rule: audit/ imports only auth.models, core/, db/ and stdlib.
It does NOT import from api/ or billing/.
"""
