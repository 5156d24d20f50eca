"""
FastAPI dependencies.

Routers receive the OrderService through `Depends(get_order_service)`; tests
replace it with `app.dependency_overrides[get_order_service]`.
"""

from functools import lru_cache

from services.order_service import OrderService, build_supabase_order_service


@lru_cache(maxsize=1)
def get_order_service() -> OrderService:
    """Process-wide service graph over the Supabase repositories."""
    return build_supabase_order_service()
