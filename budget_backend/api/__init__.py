"""Request handlers; routers in ``budget_backend.routers`` mount them."""
