# -*- coding: utf-8 -*-
"""
Jupiter API Client

Shared HTTP client for the Jupiter REST APIs with retry and error mapping.
"""

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

import requests

from ..config.settings import TrackerConfig, RETRY_BASE_DELAY
from .errors import JupiterApiError, NetworkError, RateLimitError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {502, 503, 504}
DEFAULT_RETRY_AFTER = 60


class JupiterClient:
    """Jupiter API client with retries, API key header and error mapping"""

    def __init__(self, config: TrackerConfig, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = config.jupiter_base_url.rstrip('/')
        self.timeout = config.request_timeout
        self.max_retries = config.max_retries
        self.session = session or requests.Session()
        self._sleep = sleep

        headers = {
            'User-Agent': 'solpnl/0.1',
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        if config.jupiter_api_key:
            headers['x-api-key'] = config.jupiter_api_key
        self.session.headers.update(headers)

        logger.debug(f"Jupiter client initialized for {self.base_url} "
                     f"{'with API key' if config.jupiter_api_key else 'without API key'}")

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('GET', path, params=params)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Make API request, retrying network errors and 502/503/504 with exponential backoff"""
        url = f"{self.base_url}{path}"
        attempt = 0

        while True:
            try:
                logger.debug(f"Jupiter API Request: {method} {path}")
                return self._send(method, url, **kwargs)
            except (NetworkError, JupiterApiError) as e:
                retryable = isinstance(e, NetworkError) or (
                    not isinstance(e, RateLimitError) and e.status_code in RETRYABLE_STATUS
                )
                if not retryable or attempt >= self.max_retries:
                    raise
                delay = RETRY_BASE_DELAY * (2 ** attempt)
                attempt += 1
                logger.warning(f"Retrying request after {delay:.1f}s (attempt {attempt}/{self.max_retries})")
                self._sleep(delay)

    def _send(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise NetworkError(url, e) from e

        if response.status_code == 429:
            retry_after = _retry_after_seconds(response.headers.get('Retry-After'))
            logger.warning(f"Rate limited by Jupiter, retry after {retry_after}s")
            raise RateLimitError(retry_after)

        if response.status_code >= 400:
            data = _safe_json(response)
            logger.error(f"Jupiter API error response: HTTP {response.status_code}")
            raise JupiterApiError(
                _extract_error_message(data) or response.reason or 'request failed',
                response.status_code,
                data if isinstance(data, dict) else {'raw': data},
            )

        try:
            return response.json()
        except ValueError as e:
            raise JupiterApiError(f"invalid JSON body: {e}", response.status_code) from e


def _safe_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _extract_error_message(data: Any) -> Optional[str]:
    if not data:
        return None
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return None
    error = data.get('error')
    if isinstance(error, str):
        return error
    if isinstance(data.get('message'), str):
        return data['message']
    if isinstance(error, dict) and 'message' in error:
        return str(error['message'])
    return None


def _retry_after_seconds(value: Optional[str]) -> int:
    """Retry-After header as whole seconds; accepts delta-seconds or an HTTP-date"""
    if not value:
        return DEFAULT_RETRY_AFTER
    value = value.strip()
    try:
        return max(int(value), 0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Retry-After header: {value!r}")
        return DEFAULT_RETRY_AFTER
    if when is None:
        return DEFAULT_RETRY_AFTER
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(int((when - datetime.now(timezone.utc)).total_seconds()), 0)
