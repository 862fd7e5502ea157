"""Constants for the Home Assistant LLM bridge."""

DOMAIN = "ha_llm_bridge"

# Remote Home Assistant instance
CONF_HASS_URL = "hass_url"
CONF_HASS_TOKEN = "hass_token"
CONF_REQUEST_TIMEOUT = "request_timeout"  # seconds

# Cache Behavior Settings
CONF_CACHE_DIR = "cache_dir"
CONF_CACHE_TTL = "cache_ttl"  # milliseconds
CONF_REFRESH_INTERVAL = "refresh_interval"  # milliseconds

# Search Settings
CONF_SEARCH_LIMIT = "search_limit"

DEFAULT_HASS_URL = "http://localhost:8123"
DEFAULT_CACHE_DIR = "./cache"
DEFAULT_CACHE_TTL = 60000
DEFAULT_REFRESH_INTERVAL = 60000
DEFAULT_REQUEST_TIMEOUT = 10
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50
DEFAULT_EXPLORE_LIMIT = 50
DEFAULT_STALE_THRESHOLD_HOURS = 24
DEFAULT_LOW_BATTERY_THRESHOLD = 20

DEFAULTS = {
    CONF_HASS_URL: DEFAULT_HASS_URL,
    CONF_CACHE_DIR: DEFAULT_CACHE_DIR,
    CONF_CACHE_TTL: DEFAULT_CACHE_TTL,
    CONF_REFRESH_INTERVAL: DEFAULT_REFRESH_INTERVAL,
    CONF_REQUEST_TIMEOUT: DEFAULT_REQUEST_TIMEOUT,
    CONF_SEARCH_LIMIT: DEFAULT_SEARCH_LIMIT,
}

# Environment variables, in lookup order per key
ENV_VARS = {
    CONF_HASS_URL: ("HASS_URL",),
    CONF_HASS_TOKEN: ("HASS_TOKEN", "API_ACCESS_TOKEN"),
    CONF_CACHE_DIR: ("HASS_CACHE_DIR",),
    CONF_CACHE_TTL: ("HASS_CACHE_TTL",),
    CONF_REFRESH_INTERVAL: ("HASS_REFRESH_INTERVAL",),
}

# REST endpoints
API_STATES = "/api/states"
API_AREA_REGISTRY = "/api/config/area_registry"
API_DEVICE_REGISTRY = "/api/config/device_registry"
API_SERVICES = "/api/services"
