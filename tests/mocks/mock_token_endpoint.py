import json
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import parse_qs

import httpx

EBAY_TOKEN_URL = "https://api.ebay.com/identity/v1/oauth2/token"
FACEBOOK_TOKEN_URL = "https://graph.facebook.com/v12.0/oauth/access_token"


class FrozenClock:
    """Callable clock for the services; moves only when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class MockTokenEndpoint:
    """
    Stand-in for provider token endpoints behind httpx.MockTransport.

    Queue responses per token URL; every request is recorded with its
    decoded form body.
    """

    def __init__(self):
        self.queued: Dict[str, List[httpx.Response]] = {}
        self.requests: List[httpx.Request] = []
        self.should_fail_network = False

    def queue(self, url: str, status_code: int = 200, payload=None, text: Optional[str] = None):
        if text is not None:
            response = httpx.Response(status_code, text=text)
        else:
            response = httpx.Response(status_code, json=payload if payload is not None else {})
        self.queued.setdefault(url, []).append(response)

    def queue_tokens(self, url: str, access_token: str, refresh_token: Optional[str] = None, expires_in=7200):
        payload = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
        if refresh_token is not None:
            payload["refresh_token"] = refresh_token
        self.queue(url, 200, payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.should_fail_network:
            raise httpx.ConnectError("connection refused", request=request)
        responses = self.queued.get(str(request.url))
        if not responses:
            return httpx.Response(500, text=json.dumps({"error": "no response queued"}))
        return responses.pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @staticmethod
    def form(request: httpx.Request) -> Dict[str, str]:
        parsed = parse_qs(request.content.decode())
        return {key: values[0] for key, values in parsed.items()}

    def clear_history(self):
        self.requests = []
        self.queued = {}
