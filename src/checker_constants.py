"""
checker_constants.py

Defaults for the vaccine appointment checker. Anything in here can be
overridden with flags, VC_ environment variables or config.json.
"""

import os

# Search API
DEFAULT_SEARCH_URL_PATTERN = "https://www.vaccinespotter.org/api/v0/states/%s.json"
DEFAULT_SEARCH_METHOD = "GET"
DEFAULT_SEARCH_TIMEOUT = 20.0

# Notification API
DEFAULT_NOTIFICATION_URL = "https://api.virtualbuttons.com/v1"
DEFAULT_NOTIFICATION_METHOD = "GET"
DEFAULT_NOTIFICATION_TIMEOUT = 10.0
# Methods where notification params are sent as the request body
# instead of being appended to the URL
BODY_METHODS = ("POST", "PUT", "PATCH")

# Checker defaults
DEFAULT_DISTANCE_KILOMETERS = 10.0
DEFAULT_CHECK_INTERVAL = 30.0
DEFAULT_TICK_INTERVAL = 5 * 60.0

# Geo
METERS_PER_KILOMETER = 1000.0
# Same sphere the original geo library used for great-circle distances
EARTH_RADIUS_METERS = 6378137.0

# Config sources
ENV_PREFIX = "VC_"
CONFIG_PATH = "config.json"
DOTENV_PATH = ".env"

# Process exit codes
EXIT_OK = 0
EXIT_BAD_FLAGS = 2  # argparse exits with 2 on its own
EXIT_CONFIG_FILE = 3
EXIT_INVALID_PARAMS = 4

# Log paths
LOGS_PATH = os.path.join("logs", "checker.log")
