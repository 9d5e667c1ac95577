"""Checkout: turn a user's cart into an order.

The sequence is freeze cart -> create order -> clear cart. It is not one
transaction. Once the order exists it is never undone; clearing the cart
is retried and, if it keeps failing, reported back to the caller so the
client can retry the clear on its own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .auth import Principal
from .carts import CartService
from .domain import CustomerSnapshot, Order, RentalUnit
from .errors import StoreUnavailable
from .service import OrderService

logger = logging.getLogger("orders")


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    cart_cleared: bool


class CheckoutService:
    def __init__(self, carts: CartService, orders: OrderService, clear_retries: int = 3):
        self.carts = carts
        self.orders = orders
        self.clear_retries = max(1, clear_retries)

    def checkout(
        self,
        principal: Principal,
        customer: CustomerSnapshot,
        rental_unit: Optional[RentalUnit] = None,
        rental_duration: Optional[int] = None,
    ) -> CheckoutResult:
        """Create an order from the caller's cart and empty the cart.

        Args:
            principal: The purchasing user.
            customer: Contact snapshot for the order.
            rental_unit: Optional unit applied to every rental line.
            rental_duration: Optional duration applied to every rental line.

        Returns:
            CheckoutResult with the created order and whether the cart was
            cleared.
        """
        items = self.carts.to_order_items(principal.user_id, rental_unit, rental_duration)
        order = self.orders.create_order(principal, items, customer)
        return CheckoutResult(order=order, cart_cleared=self._clear_cart(principal.user_id, order))

    def _clear_cart(self, user_ref: str, order: Order) -> bool:
        for attempt in range(1, self.clear_retries + 1):
            try:
                self.carts.clear(user_ref)
                return True
            except StoreUnavailable:
                logger.warning(
                    "cart clear failed", extra={"order_number": order.order_number, "attempt": attempt}
                )
        logger.error("cart left uncleared after checkout", extra={"order_number": order.order_number})
        return False
