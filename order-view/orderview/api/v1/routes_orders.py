# orderview/api/v1/routes_orders.py
from fastapi import APIRouter, Depends, HTTPException, Request

from orderview.domain.orders.cache import OrderCache
from orderview.domain.orders.schemas import Order
from orderview.domain.orders.service import get_order_by_id


router = APIRouter(prefix="/api/order", tags=["orders"])


def get_order_cache(request: Request) -> OrderCache:
    return request.app.state.order_cache


@router.get("/{order_uid}", response_model=Order)
async def get_order_endpoint(
    order_uid: str,
    cache: OrderCache = Depends(get_order_cache),
):
    # served from memory only; the store is never consulted here
    order = get_order_by_id(cache, order_uid)
    if order is None:
        raise HTTPException(status_code=404, detail="not found")
    return order
