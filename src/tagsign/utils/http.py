import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from typing import Optional, Dict, Any

from ..logging import get_logger
from .config import settings

logger = get_logger(__name__)

# Connection pool configuration
DEFAULT_POOL_CONNECTIONS = 4   # Number of connection pools
DEFAULT_POOL_MAXSIZE = 8       # Max connections per pool
DEFAULT_POOL_BLOCK = False     # Don't block when pool exhausted

API_VERSION = "1.5"


def build_session(
    retries: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None,
    pool_connections: int = DEFAULT_POOL_CONNECTIONS,
    pool_maxsize: int = DEFAULT_POOL_MAXSIZE,
) -> requests.Session:
    """
    Standard HTTP session for the inventory API.
    Enforces retries with backoff, connection pooling and standard headers.
    """
    session = requests.Session()

    # Configure Retries with exponential backoff
    retry = Retry(
        total=settings.HTTP_RETRIES if retries is None else retries,
        backoff_factor=1,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS", "POST"],
        raise_on_status=False,
    )

    adapter = HTTPAdapter(
        max_retries=retry,
        pool_connections=pool_connections,
        pool_maxsize=pool_maxsize,
        pool_block=DEFAULT_POOL_BLOCK,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    session.headers.update({
        "User-Agent": "tagsign/1.0.0",
        "X-API-Version": API_VERSION,
    })
    if headers:
        session.headers.update(headers)
    return session


def post_form(
    session: requests.Session,
    url: str,
    data: Any,
    timeout: float,
    **kwargs,
) -> requests.Response:
    """POST form data with an explicit timeout; transport errors propagate."""
    logger.debug(f"POST {url}")
    return session.post(url, data=data, timeout=timeout, **kwargs)
