"""billing/ -- Clients, invoices and their line items.

Layer rule: billing/ imports only core/, db/ and stdlib.
It does NOT import from api/, auth/, or audit/.
"""
