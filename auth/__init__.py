"""auth/ -- Authentication core for the BookMarket auth service.

hashing, tokens, sessions, store, gate and service hold all credential,
token and session logic. None of them know about HTTP.

Layer rule: auth/ imports only stdlib + third-party libraries, with two
exceptions: service.py takes core.config.Settings for type hints only, and
dependencies.py reads FastAPI's request state. api/ imports from auth/, not
the other way around.
"""
