"""
Delivery fee callable (stub). Flat arithmetic only, no distance lookup.
"""
import logging
from typing import Any, Dict, Optional

from config import DELIVERY_BASE_FEE, DELIVERY_FEE_PER_UNIT, DEFAULT_CURRENCY
from marketplace_models import DeliveryFeeQuote

logger = logging.getLogger(__name__)


class DeliveryFeeError(Exception):
    """Caller-visible error from the delivery fee callable"""
    status_code = 400


class UnauthenticatedError(DeliveryFeeError):
    status_code = 401


class InvalidArgumentError(DeliveryFeeError):
    status_code = 400


REQUIRED_PARAMS = ("orderId", "pickupLocation", "deliveryLocation")


def calculate_delivery_fee(caller_uid: Optional[str], params: Dict[str, Any]) -> DeliveryFeeQuote:
    if not caller_uid:
        raise UnauthenticatedError("The function must be called while authenticated.")

    missing = [name for name in REQUIRED_PARAMS if not params.get(name)]
    if missing:
        raise InvalidArgumentError(f"Missing required parameter(s): {', '.join(missing)}")

    try:
        quantity = float(params.get("orderedQuantity") or 0)
    except (TypeError, ValueError):
        raise InvalidArgumentError("orderedQuantity must be a number")
    if quantity < 0:
        raise InvalidArgumentError("orderedQuantity must not be negative")

    fee = round(DELIVERY_BASE_FEE + DELIVERY_FEE_PER_UNIT * quantity, 2)
    logger.info(f"STUB: delivery fee {fee} for order {params['orderId']} requested by {caller_uid}")
    return DeliveryFeeQuote(
        order_id=str(params["orderId"]),
        delivery_fee=fee,
        currency=params.get("currency") or DEFAULT_CURRENCY,
        explanation=(
            f"Flat estimate: base fee {DELIVERY_BASE_FEE:.2f} plus {DELIVERY_FEE_PER_UNIT:.2f} "
            f"per unit for {quantity:g} units."
        ),
    )
