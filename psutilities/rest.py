"""
Shared HTTP plumbing for the Azure DevOps and GitHub clients.
"""

from __future__ import annotations

import logging

import requests

from .errors import ApiError, NotFoundError

logger = logging.getLogger(__name__)


def quote_segment(value) -> str:
    """Percent-encode *value* for use as a single URL path segment."""
    return requests.utils.quote(str(value), safe="")


def _error_message(response) -> str:
    """Pull the service's error text out of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return (response.text or "").strip() or f"HTTP {response.status_code}"


def send_request(session, method, url, *, headers, timeout, json=None, params=None):
    """
    Issue one HTTP request and return the decoded JSON body.

    Returns ``None`` for an empty body.  Transport errors and non-2xx
    responses raise :class:`ApiError` (:class:`NotFoundError` for 404).
    """
    logger.debug("%s %s", method, url)
    try:
        response = session.request(
            method, url, headers=headers, json=json, params=params, timeout=timeout
        )
    except requests.exceptions.RequestException as e:
        raise ApiError(str(e), method=method, url=url) from e

    if response.status_code == 404:
        raise NotFoundError(
            _error_message(response), status_code=404, method=method, url=url
        )
    if not 200 <= response.status_code < 300:
        raise ApiError(
            _error_message(response),
            status_code=response.status_code,
            method=method,
            url=url,
        )
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise ApiError(
            f"Response is not valid JSON: {response.text[:200]}",
            status_code=response.status_code,
            method=method,
            url=url,
        ) from e
