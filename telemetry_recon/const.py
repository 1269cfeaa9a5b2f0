"""Constants for the telemetry reconciliation layer."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

# Analytics (ingestion) service
AUTH_PATH: Final = "/api/v1/auth"
TOTALS_PATH_FMT: Final = "/api/v1/telemetry/customers/{customer_id}/{domain}/devices/totals"

# Inventory (graph) service
RELATIONS_PATH: Final = "/api/relations"
ASSETS_PATH: Final = "/api/assets"
DEVICE_ATTRIBUTES_PATH_FMT: Final = (
    "/api/plugins/telemetry/DEVICE/{device_id}/values/attributes/SERVER_SCOPE"
)
CUSTOMER_DEVICES_PATH_FMT: Final = "/api/customer/{customer_id}/devices"

# Token renewal
DEFAULT_RENEW_SKEW_SECONDS: Final = 60
DEFAULT_RETRY_BASE_MS: Final = 500
DEFAULT_RETRY_MAX_ATTEMPTS: Final = 3

# Request shaping
DEFAULT_DETAIL_CHUNK_SIZE: Final = 50
DEFAULT_TOTALS_PAGE_SIZE: Final = 100
DEFAULT_INVENTORY_PAGE_SIZE: Final = 100
DEFAULT_REQUEST_TIMEOUT: Final = 25.0

# Completed passes
DEFAULT_RESULT_TTL_SECONDS: Final = 300

# Relations
PARENT_RELATION_TYPE: Final = "Contains"
PARENT_ENTITY_TYPE: Final = "ASSET"
DEVICE_ENTITY_TYPE: Final = "DEVICE"

# Domains served by the totals endpoint
DOMAIN_ENERGY: Final = "energy"
DOMAIN_WATER: Final = "water"
SUPPORTED_DOMAINS: Final = frozenset({DOMAIN_ENERGY, DOMAIN_WATER})

# Realtime marker used in place of a start/end period key
REALTIME_PERIOD_KEY: Final = "realtime"

# Default category when no classification rule matches
CATEGORY_OTHER: Final = "other"

# Device types fed directly by the inventory service (level, temperature)
LOCAL_TELEMETRY_DEVICE_TYPES: Final = frozenset(
    {"TANK", "CAIXA_DAGUA", "TERMOSTATO"}
)

# Attribute keys (lower-case) mapped onto DeviceAttributes fields
ATTRIBUTE_FIELD_MAP: Final[Mapping[str, str]] = {
    "slaveid": "slave_id",
    "centralid": "central_id",
    "devicetype": "device_type",
    "deviceprofile": "device_profile",
    "centralname": "central_name",
    "customername": "customer_name",
    "ownername": "customer_name",
    "connectionstatus": "connection_status",
    "lastconnecttime": "last_connect_time",
    "lastdisconnecttime": "last_disconnect_time",
    "lastactivitytime": "last_activity_time",
}

# Secondary keys used for cross-system lookup
INGESTION_ID_KEY: Final = "ingestionid"
IDENTIFIER_KEY: Final = "identifier"
LABEL_KEY: Final = "label"
POWER_LIMITS_KEYS: Final = (
    "devicemapinstantaneouspower",
    "devicemapinstaneouspower",
)
ANNOTATIONS_KEY: Final = "log_annotations"

CONNECTION_ONLINE_VALUES: Final = frozenset({"online", "ok", "running", "connected"})
CONNECTION_OFFLINE_VALUES: Final = frozenset({"offline", "disconnected", "bad"})
