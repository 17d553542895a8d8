import logging
from collections import defaultdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import storage
from auth import get_current_user
from permissions import can_manage_shop
from schemas import Order as OrderSchema, OrderItem, OrderStatus
from shops import managed_shop, memberships_of

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cart"])

# Allowed status moves; COMPLETED and CANCELLED are final.
ORDER_TRANSITIONS = {
    OrderStatus.NEW.value: {OrderStatus.PAID.value, OrderStatus.CANCELLED.value},
    OrderStatus.PAID.value: {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.COMPLETED.value},
}


class AddCartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=1000)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


# Cart
@router.get("/cart")
def get_cart(current_user=Depends(get_current_user)):
    return storage.get_cart(current_user["id"])


@router.post("/cart/items")
def add_to_cart(payload: AddCartItemRequest, current_user=Depends(get_current_user)):
    try:
        return storage.add_cart_item(current_user["id"], payload.product_id, payload.quantity)
    except storage.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/cart/items/{product_id}")
def remove_from_cart(product_id: str, current_user=Depends(get_current_user)):
    return storage.remove_cart_item(current_user["id"], product_id)


@router.delete("/cart")
def clear_cart(current_user=Depends(get_current_user)):
    return storage.clear_cart(current_user["id"])


# Orders
def take_stock(shop_id: str, lines):
    """Decrement stock for every line of one shop, all or nothing."""
    taken = []
    with storage.shop_lock(shop_id):
        for product, quantity in lines:
            if not storage.decrement_stock(product["id"], quantity):
                for p, q in taken:
                    storage.restock(p["id"], q)
                return False, product
            taken.append((product, quantity))
    return True, None


@router.post("/orders", status_code=201)
def checkout(current_user=Depends(get_current_user)):
    cart = storage.get_cart(current_user["id"])
    if not cart["items"]:
        raise HTTPException(status_code=400, detail="Cart is empty")

    by_shop = defaultdict(list)
    for item in cart["items"]:
        product = storage.get_product(item["product_id"])
        if not product:
            raise HTTPException(status_code=404, detail=f"Product {item['product_id']} is no longer available")
        by_shop[product["shop_id"]].append((product, item["quantity"]))

    reserved = []
    for shop_id, lines in by_shop.items():
        ok, short = take_stock(shop_id, lines)
        if not ok:
            for taken_shop, taken_lines in reserved:
                with storage.shop_lock(taken_shop):
                    for product, quantity in taken_lines:
                        storage.restock(product["id"], quantity)
            raise HTTPException(status_code=409, detail=f"Not enough stock for {short['name']}")
        reserved.append((shop_id, lines))

    orders = []
    for shop_id, lines in reserved:
        items = [OrderItem(product_id=p["id"], name=p["name"], price=p["price"], quantity=q) for p, q in lines]
        total = round(sum(i.price * i.quantity for i in items), 2)
        orders.append(storage.create_order(OrderSchema(user_id=current_user["id"], shop_id=shop_id, items=items, total=total)))
    storage.clear_cart(current_user["id"])
    logger.info("User %s placed %d orders", current_user["id"], len(orders))
    return orders


@router.get("/orders/mine")
def my_orders(current_user=Depends(get_current_user)):
    return storage.get_orders(user_id=current_user["id"])


@router.get("/shops/{shop_id}/orders")
def shop_orders(shop_id: str, current_user=Depends(get_current_user)):
    shop = managed_shop(shop_id, current_user)
    return storage.get_orders(shop_id=shop["id"])


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateOrderStatusRequest, current_user=Depends(get_current_user)):
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    new_status = payload.status.value
    shop = storage.get_shop(order["shop_id"])
    is_buyer_cancel = order["user_id"] == current_user["id"] and new_status == OrderStatus.CANCELLED.value
    if not is_buyer_cancel and not can_manage_shop(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="You cannot change this order")
    if new_status not in ORDER_TRANSITIONS.get(order["status"], set()):
        raise HTTPException(status_code=409, detail=f"Cannot move an order from {order['status']} to {new_status}")

    # Only the request whose write still sees the old status applies the side effects.
    updated = storage.transition_order(order["id"], order["status"], {"status": new_status})
    if updated is None:
        raise HTTPException(status_code=409, detail="Order status changed concurrently, reload and retry")
    if new_status == OrderStatus.CANCELLED.value:
        with storage.shop_lock(order["shop_id"]):
            for item in order["items"]:
                storage.restock(item["product_id"], item["quantity"])
    elif new_status == OrderStatus.COMPLETED.value:
        storage.increment_transactions(order["shop_id"])
    logger.info("Order %s moved from %s to %s by %s", order["id"], order["status"], new_status, current_user["id"])
    return updated
