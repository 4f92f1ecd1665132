# src/daokit/core/logging/
# ├─ __init__.py       # public API: setup_logging, request id helpers
# ├─ builder.py        # make_dict_config(settings) + setup_logging(settings)
# ├─ formatters.py     # JsonFormatter, ColorFormatter
# ├─ filters.py        # RequestIdFilter, RedactFilter (+ contextvar helpers)
# ├─ handlers.py       # handler factories (console, files, stats file)
# └─ version.py        # installed distribution name/version


from .builder import setup_logging, make_dict_config, STATS_LOGGER_NAME
from .filters import (
    set_request_id,
    get_request_id,
    reset_request_id,
    request_id_scope,
    RequestIdFilter,
    RedactFilter,
)

__all__ = [
    "setup_logging",
    "make_dict_config",
    "STATS_LOGGER_NAME",
    "set_request_id",
    "get_request_id",
    "reset_request_id",
    "request_id_scope",
    "RequestIdFilter",
    "RedactFilter",
]
