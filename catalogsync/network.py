"""Remote catalog source. Pure fetch: no retries, no persistence."""

import asyncio
from typing import Any, List, Optional

import requests

from .errors import PermanentError, TransientNetworkError
from .logger import get_logger
from .models import RemoteItem
from .schema import CONTAINER_KEY, validate_container

logger = get_logger()

DEFAULT_API_URL = "https://devbytes.udacity.com/devbytes.json"
DEFAULT_TIMEOUT = 15.0

# Request errors caused by our own configuration; retrying cannot fix them.
_CONFIG_ERRORS = (
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidURL,
)


def parse_container(payload: Any) -> List[RemoteItem]:
    """
    Turn a decoded response body into remote items.

    Raises:
        PermanentError: If the body or any entry is malformed
    """
    errors = validate_container(payload)
    if errors:
        logger.error("Malformed catalog response", errors=errors[:10], total_errors=len(errors))
        raise PermanentError(f"Malformed catalog response: {'; '.join(errors[:3])}")
    return [RemoteItem.from_json(entry) for entry in payload[CONTAINER_KEY]]


class RemoteSource:
    """
    Fetches the latest catalog from a JSON endpoint.

    The blocking HTTP call runs in a worker thread. If the awaiting task
    is cancelled, the result of the in-flight request is discarded.
    """

    def __init__(
        self,
        url: str = DEFAULT_API_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    async def fetch_latest(self) -> List[RemoteItem]:
        """
        Fetch the current catalog.

        Raises:
            TransientNetworkError: On connectivity, timeout or HTTP status failures
            PermanentError: On an undecodable or malformed response
        """
        payload = await asyncio.to_thread(self._get_json)
        items = parse_container(payload)
        logger.debug("Fetched catalog", url=self.url, items=len(items))
        return items

    def _get_json(self) -> Any:
        logger.record_api_call()
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            logger.warning("Catalog request failed", url=self.url, status=status)
            raise TransientNetworkError(f"Catalog request failed ({status}): {self.url}") from e
        except requests.exceptions.Timeout as e:
            logger.warning("Catalog request timed out", url=self.url)
            raise TransientNetworkError(f"Catalog request timed out: {self.url}") from e
        except _CONFIG_ERRORS as e:
            logger.error("Catalog URL is invalid", url=self.url, error=str(e))
            raise PermanentError(f"Catalog URL is invalid: {self.url}") from e
        except requests.exceptions.RequestException as e:
            logger.warning("Catalog request error", url=self.url, error=str(e))
            raise TransientNetworkError(f"Catalog request error: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            logger.error("Catalog response is not JSON", url=self.url)
            raise PermanentError(f"Catalog response is not valid JSON: {self.url}") from e

    def close(self) -> None:
        self._session.close()
