"""Client for the Humanitix public events API."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from processor.models import RawEvent

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api.humanitix.com/v1'

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class HumanitixAPIError(Exception):
    """Failure talking to the Humanitix API, tagged with its kind."""

    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, endpoint: str) -> 'HumanitixAPIError':
        if status_code in (401, 403):
            kind = 'auth'
        elif status_code == 404:
            kind = 'not_found'
        elif status_code == 429:
            kind = 'rate_limit'
        elif status_code >= 500:
            kind = 'server'
        else:
            kind = 'client'
        return cls(kind, f"HTTP {status_code} from {endpoint}", status_code)


class HumanitixClient:
    """Fetches events from the Humanitix API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        org_id: str = '',
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize the API client.

        Args:
            api_key: Humanitix API key, sent as the x-api-key header
            base_url: API base URL
            org_id: Optional organiser id for organiser-scoped endpoints
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request for retryable failures
        """
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip('/')
        self.org_id = org_id
        self.timeout = timeout
        self.max_retries = max_retries

    @property
    def event_endpoints(self) -> List[str]:
        """Endpoint variants tried in order when listing events."""
        endpoints = ['/events', '/organiser/events']
        if self.org_id:
            endpoints.append(f'/organiser/{self.org_id}/events')
        return endpoints

    def fetch_page(self, page_number: int = 1) -> List[RawEvent]:
        """
        Fetch one page of events.

        Endpoint variants are tried in order; the first one returning events
        wins. Authentication failures are raised immediately.

        Args:
            page_number: Page to fetch, starting at 1

        Returns:
            List of raw event documents (empty when no endpoint has events)

        Raises:
            HumanitixAPIError: If every endpoint variant failed
        """
        params = {'page': max(1, int(page_number))}
        last_error = None
        any_success = False

        for endpoint in self.event_endpoints:
            try:
                payload = self._request(endpoint, params=params)
            except HumanitixAPIError as e:
                if e.kind == 'auth':
                    raise
                logger.warning(f"Endpoint {endpoint} failed: {e}")
                last_error = e
                continue

            any_success = True
            events = self._extract_events(payload)
            if events:
                logger.info(
                    f"Fetched {len(events)} events from {endpoint} (page {params['page']})"
                )
                return events

        if last_error is not None and not any_success:
            raise last_error

        logger.info(f"No events found on page {params['page']}")
        return []

    def fetch_one(self, external_id: str) -> RawEvent:
        """
        Fetch a single event by its Humanitix id.

        Args:
            external_id: Humanitix event id

        Returns:
            Raw event document

        Raises:
            HumanitixAPIError: If the request fails or returns no event
        """
        payload = self._request(f'/events/{external_id}')
        if isinstance(payload, dict):
            event = payload.get('data') or payload.get('event') or payload
            if isinstance(event, dict) and event:
                return event
        raise HumanitixAPIError(
            'invalid_response', f"No event document returned for {external_id}"
        )

    def _extract_events(self, payload: Any) -> List[RawEvent]:
        if isinstance(payload, dict):
            payload = payload.get('data', payload.get('events', []))
        if not isinstance(payload, list):
            return []
        return [event for event in payload if isinstance(event, dict)]

    def _headers(self) -> Dict[str, str]:
        headers = {
            'x-api-key': self.api_key,
            'Accept': 'application/json'
        }
        if self.org_id:
            headers['X-Organiser-ID'] = self.org_id
        return headers

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an endpoint with retry logic and decode its JSON body.

        Args:
            endpoint: Path relative to the base URL
            params: Query parameters

        Returns:
            Decoded JSON payload

        Raises:
            HumanitixAPIError: If all retry attempts fail or the response is
                not retryable
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"GET {url} (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(
                    url,
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout
                )
            except requests.Timeout as e:
                error = HumanitixAPIError('timeout', f"Request to {endpoint} timed out: {e}")
            except requests.RequestException as e:
                error = HumanitixAPIError('network', f"Request to {endpoint} failed: {e}")
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError:
                        raise HumanitixAPIError(
                            'invalid_response',
                            f"Invalid JSON response from {endpoint}",
                            response.status_code
                        )
                error = HumanitixAPIError.from_status(response.status_code, endpoint)
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise error

            if attempt < self.max_retries - 1:
                # Calculate exponential backoff delay
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): {error}. "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)
            else:
                logger.error(
                    f"All {self.max_retries} retry attempts failed. Last error: {error}"
                )
                raise error
