"""
API client for communicating with the budget sync API server.

This module handles all HTTP communication between the CLI and the API server.
"""

import time
from urllib.parse import quote
from typing import Any, Dict, List, Optional
import requests


class APIClientError(Exception):
    """Exception raised when API communication fails."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 issues: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.issues = issues or []


class APIClient:
    """Client for communicating with the budget sync API server."""

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: int = 120):
        self.base_url = base_url.rstrip('/')
        self.session = requests.Session()
        self.timeout = timeout  # confirm and import wait on the bank and the ledger

    def _make_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        Make an HTTP request to the API server.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint (without base URL)
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data, None for empty responses

        Raises:
            APIClientError: If request fails or server returns error
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise APIClientError(f"Network error: {e}")

        if response.status_code >= 400:
            issues = []
            try:
                error_data = response.json()
                error_message = error_data.get('detail', f'HTTP {response.status_code}')
                issues = error_data.get('issues', [])
            except (ValueError, AttributeError):
                error_message = f'HTTP {response.status_code}: {response.text}'
            raise APIClientError(f"API request failed: {error_message}", response.status_code, issues)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise APIClientError(f"Invalid JSON response: {e}")

    def wait_for_server(self, max_attempts: int = 30, delay: float = 1.0) -> bool:
        """
        Wait for the API server to become available.

        Returns:
            True if server is available, False if timeout
        """
        for attempt in range(max_attempts):
            try:
                response = self.session.get(f"{self.base_url}/health", timeout=5)
                if response.status_code == 200:
                    return True
            except requests.exceptions.RequestException:
                pass

            if attempt < max_attempts - 1:
                time.sleep(delay)

        return False

    # Sync session

    def start_session(self) -> Dict[str, Any]:
        return self._make_request("POST", "/sync/start")

    def begin_bank_auth(self, session_id: str) -> Dict[str, Any]:
        return self._make_request("POST", "/sync/bank-auth", json={"session_id": session_id})

    def confirm_challenge(self, session_id: str) -> Dict[str, Any]:
        """Confirm the challenge; the response is the session summary ready for review."""
        return self._make_request("POST", "/sync/confirm", json={"session_id": session_id})

    def get_session(self) -> Dict[str, Any]:
        return self._make_request("GET", "/sync/session")

    def import_transactions(self, session_id: str) -> Dict[str, Any]:
        return self._make_request("POST", "/sync/import", json={"session_id": session_id})

    def force_reimport(self, transaction_ids: List[str]) -> Dict[str, Any]:
        return self._make_request("POST", "/sync/force-reimport", json={"transaction_ids": transaction_ids})

    def cancel_session(self, session_id: str) -> Dict[str, Any]:
        return self._make_request("POST", "/sync/cancel", json={"session_id": session_id})

    # Review edits

    def skip_transaction(self, transaction_id: str) -> Dict[str, Any]:
        return self._make_request("POST", f"/transactions/{quote(transaction_id, safe='')}/skip")

    def assign_category(self, transaction_id: str, category_id: str, category_name: str) -> Dict[str, Any]:
        return self._make_request(
            "PUT", f"/transactions/{quote(transaction_id, safe='')}/category",
            json={"category_id": category_id, "category_name": category_name}
        )
