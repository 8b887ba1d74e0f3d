"""auth/ -- Authentication and authorization package for the billing API.

Layer rule: auth/ imports only core/, db/, stdlib + third-party libraries.
It does NOT import from api/, billing/, or audit/.
api/ imports from auth/, not the other way around.
"""
