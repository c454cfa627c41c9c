"""
Status vocabularies shared by the database records, services and API schemas.

Values are the strings persisted in DynamoDB.
"""

import enum


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PAID = "Paid"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    RAZORPAY = "razorpay"


class ReturnStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class RefundStatus(str, enum.Enum):
    """Refund sub-status on an approved return; gateway statuses are stored verbatim"""
    CREATED = "created"
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class DeliveryStatus(str, enum.Enum):
    READY_TO_SHIP = "READY_TO_SHIP"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    RTO = "RTO"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ReferenceType(str, enum.Enum):
    """Aggregates a shipment can belong to"""
    ORDER = "Order"
    BUYBACK = "Buyback"
    RETURN = "Return"


# Orders in these states may still be cancelled by the customer
CANCELLABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
