"""
Credit-metered API gateway.

Every inbound request is authenticated by API key, priced, debited against
the client's prepaid balance and forwarded to its routing target.

Structure:
- app.main: FastAPI app, admin routes and the catch-all proxy route.
- app.domain: The request pipeline composing the stages below.
- app.auth: API key validation and cached client lookup.
- app.routing: Static target table and path matching.
- app.credits: Cost table and the atomic credit ledger.
- app.proxy: Backend forwarding and header rewriting.
- app.usage: Detached per-day usage counters.
- app.admin: Client, API key and credit management.
"""
