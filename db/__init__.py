"""db/ -- Database access for the billing API.

Layer rule: db/ imports only core/ + third-party libraries. Stores in auth/,
audit/ and billing/ import from db/, never the other way around.
"""
