import logging
import math
import sys
from typing import Any, Dict, List, Optional

import structlog

from onemeal.core.config import settings
from onemeal.utils.rounding import round_coordinate

COORDINATE_KEYS = frozenset({"lat", "lng", "latitude", "longitude"})

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def round_coordinates(_logger: Any, _method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coarsens coordinate fields to the stored precision before rendering.

    A location only ever leaves the process privacy-rounded, whichever call
    site logged it. Non-numeric or non-finite values are dropped.
    """
    for key in COORDINATE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            event_dict[key] = round_coordinate(value, settings.COORDINATE_PRECISION)
        else:
            del event_dict[key]
    return event_dict


def add_service_info(_logger: Any, _method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("version", settings.VERSION)
    return event_dict


def build_processors(env: Optional[str] = None) -> List[Any]:
    """Processor chain for `env`: console output in development, JSON elsewhere."""
    env = (env or settings.ENV).lower()

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_info,
        round_coordinates,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
    ]

    if env == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend([structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()])
    return processors


def configure_logging(env: Optional[str] = None):
    """
    Routes structlog and standard library records (uvicorn included) to
    stdout through one processor chain.
    """
    structlog.configure(
        processors=build_processors(env),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.INFO)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True
