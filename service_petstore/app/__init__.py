"""
Petstore query service package.

The service runs petstore reads through a per-request query cache so
results can be handed to the client as a hydration payload:
- Keys: deterministic cache keys per resource domain
- Coalescing: one in-flight fetch per key
- Hydration: server snapshots seed fresh client caches
- Invalidation: successful writes mark affected prefixes stale

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP client for the petstore resource service.
- app.auth: Per-call credential resolution and session flows.
- app.caching: Key factory, store and coordinators.
- app.queries: Petstore reads and invalidating writes.
"""
