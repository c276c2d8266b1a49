# db_tables.py — single source of truth for table names
DELIVERIES         = "deliveries"      # default schema: public
DRIVERS            = "drivers"
SALES              = "sales"
DEALERS            = "dealers"
MESSAGES           = "messages"
NOTIFICATIONS      = "notifications"
DRIVER_PREFERENCES = "driver_preferences"

SCHEMA = "public"
