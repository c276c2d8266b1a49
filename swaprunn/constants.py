"""Delivery statuses, user roles and option lists shared across pages."""

STATUS_PENDING = "pending"
STATUS_PENDING_DRIVER = "pending_driver_acceptance"
STATUS_ACCEPTED = "accepted"
STATUS_ASSIGNED = "assigned"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

ROLE_SALES = "sales"
ROLE_DRIVER = "driver"

SERVICE_TYPES = ("delivery", "swap")

TIMEFRAMES = ("tomorrow", "next_few_days", "next_week", "custom")
