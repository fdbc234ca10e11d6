"""auth/ -- Credential & Session Authority for CredGate.

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
The components take configuration as constructor arguments; only the
assembly code in api/main.py reads get_settings().
"""
