"""auth/ -- Credential resolution and authorization for the DNSHost API.

Pipeline: strategies (session, API key, domain key, basic + 2FA) ->
gatekeeper (suspension) -> impersonation. See auth/pipeline.py.

Layer rule: auth/ imports only stdlib, third-party libraries and core.config.
It does NOT import from api/. api/ imports from auth/, not the other way around.
Only auth/dependencies.py knows about FastAPI.
"""
