"""Booking API client for trip discovery and location ingest."""

from __future__ import annotations

from typing import Any

import requests

from triptrack.data.models import Booking, PositionSample


class ApiClientError(Exception):
    """Raised when a booking API request fails or returns a non-2xx response."""


class ApiClient:
    """Thin wrapper around the booking API using requests."""

    def __init__(self, base_url: str, token: str = "", timeout_seconds: int = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds

    def set_token(self, token: str | None) -> None:
        """Replace (or clear) the bearer token sent with every request."""
        self._token = token or ""

    def get_my_bookings(self) -> list[Booking]:
        """Fetch the current user's bookings; entries without an id are skipped."""
        response_json = self._request("GET", "/bookings/mine")
        bookings = []
        for raw in _extract_items(response_json):
            if not isinstance(raw, dict):
                continue
            booking = Booking.from_api(raw)
            if booking is not None:
                bookings.append(booking)
        return bookings

    def post_location(self, booking_id: str, sample: PositionSample) -> dict[str, Any]:
        """Persist one sample server-side for the given booking."""
        return self._request("POST", f"/bookings/{booking_id}/location", json=sample.to_payload())

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if method == "GET":
                response = requests.get(url, headers=self._headers(), timeout=self._timeout_seconds)
            else:
                response = requests.post(
                    url, headers=self._headers(), json=json, timeout=self._timeout_seconds
                )
        except requests.RequestException as exc:
            raise ApiClientError(f"Booking API request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            body_text = response.text.strip()
            detail = f"Status {response.status_code}"
            if body_text:
                detail = f"{detail}, Body: {body_text}"
            raise ApiClientError(f"Booking API request failed: {detail}")

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ApiClientError("Booking API response was not valid JSON") from exc


def _extract_items(response_json: Any) -> list[Any]:
    # Accepts {"data": {"items": [...]}}, {"data": [...]} or a bare list.
    if isinstance(response_json, list):
        return response_json
    if not isinstance(response_json, dict):
        return []
    data = response_json.get("data")
    if isinstance(data, dict):
        items = data.get("items")
        return items if isinstance(items, list) else []
    if isinstance(data, list):
        return data
    return []


__all__ = ["ApiClient", "ApiClientError"]
