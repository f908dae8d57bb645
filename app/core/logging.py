import logging
from ..config import get_settings

def setup_logging():
    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("uvicorn.access").disabled = False
    # httpx logs every LLM request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
