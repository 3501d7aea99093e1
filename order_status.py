"""
Order status state machine - side effects for order status transitions
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from config import DEFAULT_CURRENCY
from marketplace_models import Order, OrderStatus, PayoutRequest, PayoutStatus, as_utc, utc_now

logger = logging.getLogger(__name__)

CANCELLATION_STATUSES = {
    OrderStatus.CANCELLED_BY_FARMER.value,
    OrderStatus.CANCELLED_BY_BUYER.value,
    OrderStatus.DELIVERY_FAILED.value,
}
# Goods already left the farm: cancelling from here does not restore inventory
NO_REVERT_STATUSES = {
    OrderStatus.DRIVER_PICKED_UP_ENROUTE_TO_DELIVERY.value,
    OrderStatus.DELIVERED_PENDING_BUYER_CONFIRMATION.value,
    OrderStatus.COMPLETED.value,
}


def initiate_farmer_payout(storage, order_id: str, farmer_id: str, amount: float,
                           currency: str, now: Optional[datetime] = None) -> str:
    """
    Add a farmer payout request to the payoutQueue collection.

    Called once an order is completed. Returns the payout document ID;
    storage errors are logged and re-raised for the caller to handle.
    """
    now = as_utc(now) if now else utc_now()
    payout = PayoutRequest(
        order_id=order_id,
        farmer_id=farmer_id,
        amount=amount,
        currency=currency,
        status=PayoutStatus.PENDING_PROCESSING,
        request_timestamp=now,
        last_updated=now,
    )
    try:
        payout_id = storage.add_payout_request(payout)
    except Exception as e:
        logger.error(f"Error adding payout to queue for order {order_id}: {e}")
        raise
    logger.info(f"Payout request {payout_id} added to queue for Order {order_id}.")
    return payout_id


class OrderStatusHandler:
    """Reacts to writes on order documents"""

    def __init__(self, storage):
        self.storage = storage

    def on_order_written(self, order_id: str,
                         before: Optional[Dict[str, Any]],
                         after: Optional[Dict[str, Any]],
                         now: Optional[datetime] = None) -> Optional[str]:
        """Run the side effect for a status transition; returns the action taken, if any"""
        if after is None:
            logger.info(f"Order {order_id} deleted, no further action.")
            return None

        old_status = (before or {}).get('status')
        new_status = after.get('status')
        if new_status == old_status:
            return None

        now = as_utc(now) if now else utc_now()
        logger.info(f"Order {order_id} from '{old_status or 'N/A'}' to '{new_status}'.")

        try:
            order = Order.model_validate({**after, 'id': order_id})
        except ValidationError as e:
            logger.error(f"Order {order_id} failed validation, no side effects run: {e}")
            return None

        if new_status == OrderStatus.FARMER_CONFIRMED_AWAITING_DRIVER.value:
            logger.info(f"STUB: Calculate delivery fee triggered for order {order_id}.")
            return "delivery_fee_requested"
        if new_status == OrderStatus.OUT_FOR_DELIVERY.value:
            logger.info(f"Placeholder: Notify buyer {order.buyer_id} - Out for Delivery.")
            return "notified"
        if new_status == OrderStatus.DELIVERED_PENDING_BUYER_CONFIRMATION.value:
            logger.info(f"Placeholder: Notify buyer {order.buyer_id} - Order Delivered.")
            return "notified"
        if new_status == OrderStatus.COMPLETED.value:
            logger.info(f"Placeholder: Notify buyer {order.buyer_id} & farmer {order.farmer_id} - Order Completed.")
            return self._initiate_payout(order, now)
        if new_status in CANCELLATION_STATUSES:
            logger.info(f"Placeholder: Notify for cancelled/failed order {order_id}.")
            return self._revert_commitment(order, old_status, now)
        return None

    def _initiate_payout(self, order: Order, now: datetime) -> Optional[str]:
        if order.payout_initiation_timestamp:
            logger.info(f"Payout for order {order.id} already initiated at {order.payout_initiation_timestamp}, skipping.")
            return None
        amount = order.total_goods_price
        if not order.farmer_id or not amount or amount <= 0:
            logger.warning(f"Cannot initiate payout for order {order.id}: farmer={order.farmer_id}, amount={amount}")
            return None
        try:
            logger.info(f"Order {order.id} completed. Initiating payout.")
            initiate_farmer_payout(
                self.storage, order.id, order.farmer_id, amount,
                order.currency or DEFAULT_CURRENCY, now=now
            )
            self.storage.update_order(order.id, {
                'payoutInitiationTimestamp': now,
                'lastUpdated': now,
            })
        except Exception as e:
            # Order stays completed; the payout is reconciled out of band.
            logger.error(f"Failed to initiate payout for order {order.id}: {e}")
            return None
        return "payout_initiated"

    def _revert_commitment(self, order: Order, old_status: Optional[str], now: datetime) -> Optional[str]:
        if old_status in NO_REVERT_STATUSES:
            logger.info(f"Order {order.id} cancelled after '{old_status}', committed quantity kept.")
            return None
        if old_status in CANCELLATION_STATUSES:
            logger.info(f"Order {order.id} was already '{old_status}', committed quantity already released.")
            return None
        if not order.listing_id or not order.ordered_quantity or order.ordered_quantity <= 0:
            return None
        try:
            self.storage.revert_listing_commitment(order.listing_id, order.ordered_quantity, now)
        except Exception as e:
            logger.error(f"Failed to revert quantity for {order.listing_id}: {e}")
            return None
        logger.info(f"Reverted quantityCommitted for {order.listing_id}.")
        return "quantity_reverted"
