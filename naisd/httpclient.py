import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from naisd.config import Settings

IDEMPOTENT_METHODS = frozenset(["GET", "HEAD", "PUT"])
TRANSIENT_STATUSES = (502, 503, 504)


def retry_policy(settings: Settings) -> Retry:
    # Connection errors and gateway failures only; 4xx is never retried
    return Retry(
        total=settings.http_max_retries,
        backoff_factor=settings.http_backoff_factor,
        status_forcelist=TRANSIENT_STATUSES,
        allowed_methods=IDEMPOTENT_METHODS,
        raise_on_status=False,
    )


def new_session(settings: Settings) -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry_policy(settings))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
