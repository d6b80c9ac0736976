"""auth/ -- Authentication and group/permission authorization core for permgate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration reaches it as plain
constructor arguments; api/ and main.py import from auth/, not the other way
around.
"""
