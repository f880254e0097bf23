# storefront/core/log.py
import logging


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # SQL echo is configured on the engine, keep the driver chatter down
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
