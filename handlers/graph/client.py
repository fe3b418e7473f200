# ================================================================
# File     : client.py
# Purpose  : Microsoft Graph API read-only client for Entra (Azure AD)
# Notes    : Read-only: GET + pagination + retries. No destructive ops.
#            - Auto-refresh token on 401
#            - Proactive refresh if token expires in <5 minutes
#            - Per-request timeout; thread-safe token refresh so
#              group lookups can share one client
# ================================================================

import os
import time
import getpass
import threading
from typing import Dict, Any, List, Optional

import msal
import requests

from core.utils import fncPrintMessage, fncRetry, fncMask

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
GRAPH_BETA = "https://graph.microsoft.com/beta"
MAX_THROTTLE_RETRIES = 5


class GraphError(Exception):
    def __init__(self, status: int, message: str = ""):
        super().__init__(f"Graph API request failed with status {status}: {message}".strip())
        self.status = status


class GraphClient:
    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30,
        authority_host: str = "https://login.microsoftonline.com",
    ):
        tenant_id = tenant_id or os.getenv("RISKPOODLE_TENANT_ID")
        client_id = client_id or os.getenv("RISKPOODLE_CLIENT_ID")
        client_secret = client_secret or os.getenv("RISKPOODLE_CLIENT_SECRET")

        # Prompt interactively if any credential is missing
        if not tenant_id:
            tenant_id = input("Enter Tenant ID: ").strip()
        if not client_id:
            client_id = input("Enter Application (Client) ID: ").strip()
        if not client_secret:
            fncPrintMessage(
                "No Client Secret found *Hidden* "
                "Credentials are stored in environment only for this session.",
                "warn",
            )
            client_secret = getpass.getpass("Enter Client Secret (input hidden): ").strip()

        os.environ["RISKPOODLE_TENANT_ID"] = tenant_id
        os.environ["RISKPOODLE_CLIENT_ID"] = client_id
        os.environ["RISKPOODLE_CLIENT_SECRET"] = client_secret

        self.tenant_id = tenant_id
        self.client_id = client_id
        self.timeout = timeout

        # App-only scope. Needs User.Read.All, GroupMember.Read.All,
        # Policy.Read.All and (for --risky-users) IdentityRiskyUser.Read.All
        self.scope = ["https://graph.microsoft.com/.default"]
        self.authority = f"{authority_host.rstrip('/')}/{tenant_id}"

        fncPrintMessage(f"Initialising Microsoft Graph (read-only) client for app {fncMask(client_id)}...", "info")

        self.app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=self.authority,
        )

        self.token: str = ""
        self._token_expires_on: int = 0  # epoch seconds
        self._token_lock = threading.Lock()
        self._set_token(self._acquire_token())

        fncPrintMessage("GraphClient initialised (read-only).", "success")

    # ---------- Token helpers ----------

    def _acquire_token(self) -> Dict[str, Any]:
        """Acquire a token using MSAL (silent -> client creds). Returns MSAL result dict."""
        fncPrintMessage("Requesting Microsoft Graph access token...", "debug")
        result = self.app.acquire_token_silent(self.scope, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scope)
        if "access_token" not in result:
            fncPrintMessage(
                f"MSAL Authentication failed: {result.get('error_description', 'Unknown error')}",
                "error",
            )
            raise GraphError(401, "Failed to acquire access token")
        return result

    def _set_token(self, msal_result: Dict[str, Any]) -> None:
        self.token = msal_result["access_token"]
        try:
            self._token_expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            self._token_expires_on = 0
        if not self._token_expires_on:
            self._token_expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))

    def _refresh_token(self) -> None:
        with self._token_lock:
            self._set_token(self._acquire_token())

    def _ensure_fresh_token(self) -> None:
        """Proactively refresh token if it expires in <5 minutes."""
        if int(time.time()) >= (self._token_expires_on - 300):
            fncPrintMessage("Refreshing access token (nearing expiry)...", "debug")
            self._refresh_token()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "ConsistencyLevel": "eventual",
        }

    # ---------- HTTP handling ----------

    def _send(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return requests.get(url, headers=self._auth_headers(), params=params, timeout=self.timeout)

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single GET with proactive refresh, 429 back-off and one 401 refresh-retry."""
        self._ensure_fresh_token()
        resp = self._send(url, params)

        throttled = 0
        while resp.status_code == 429 and throttled < MAX_THROTTLE_RETRIES:
            throttled += 1
            retry_after = int(resp.headers.get("Retry-After", 5))
            fncPrintMessage(f"Rate limit hit. Sleeping for {retry_after}s...", "warn")
            time.sleep(retry_after)
            resp = self._send(url, params)

        if resp.status_code == 401:
            try:
                err = (resp.json().get("error") or {})
            except ValueError:
                err = {}
            code = err.get("code") or ""
            msg = err.get("message") or ""
            if "InvalidAuthenticationToken" in code or "expired" in str(msg).lower():
                fncPrintMessage("Access token expired, Attempting Refresh.", "warn")
                self._refresh_token()
                resp = self._send(url, params)

        if resp.status_code == 200:
            return resp.json()

        if resp.status_code >= 400:
            fncPrintMessage(f"Graph API Error [{resp.status_code}] -> {resp.text}", "debug")
            raise GraphError(resp.status_code, resp.text)

        try:
            return resp.json()
        except ValueError:
            return {"status": resp.status_code, "text": resp.text}

    @staticmethod
    def _url(endpoint: str, beta: bool = False) -> str:
        endpoint = endpoint.strip()
        if endpoint.startswith("https://"):
            return endpoint
        return f"{GRAPH_BETA if beta else GRAPH_ROOT}/{endpoint.lstrip('/')}"

    # ---------- Public API ----------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, beta: bool = False) -> Dict[str, Any]:
        """
        Perform a GET request to a Graph endpoint (single page).
        Use get_all for paginated resources.
        """
        url = self._url(endpoint, beta)
        fncPrintMessage(f"GET {url}", "debug")
        return fncRetry(lambda: self._request(url, params=params), exceptions=(requests.RequestException,))

    def get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None, beta: bool = False) -> List[Dict[str, Any]]:
        """
        Retrieve all items from a paginated Graph endpoint.
        Returns a flat list of items (value) for list endpoints.
        Example: client.get_all("users?$select=id,assignedLicenses")
        """
        url = self._url(endpoint, beta)
        fncPrintMessage(f"GET (all pages) {url}", "debug")

        data = fncRetry(lambda: self._request(url, params=params), exceptions=(requests.RequestException,))
        if not isinstance(data, dict):
            return []
        if "value" not in data:
            return [data]

        items: List[Dict[str, Any]] = list(data.get("value") or [])
        next_link = data.get("@odata.nextLink")
        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            link = next_link
            page = fncRetry(lambda: self._request(link), exceptions=(requests.RequestException,))
            if not isinstance(page, dict):
                break
            items.extend(page.get("value") or [])
            next_link = page.get("@odata.nextLink")

        return items
