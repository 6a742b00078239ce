from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from coatcheck.config import settings

logger = logging.getLogger(__name__)

DISCOVERY_CACHE_SECONDS = 3600


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str | None
    expires_at: int
    id_token: str | None = None


class OidcClient:
    """Authorization-code client for the configured OpenID Connect issuer."""

    def __init__(
        self,
        *,
        issuer_url: str,
        client_id: str,
        client_secret: str | None = None,
        scopes: str = 'openid email profile offline_access',
        timeout_seconds: int = 10,
    ) -> None:
        self.issuer_url = issuer_url.rstrip('/')
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.timeout_seconds = timeout_seconds
        self._config: dict | None = None
        self._config_fetched_at: float | None = None

    def _request_json(self, req: Request, *, what: str) -> dict:
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                return json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise ValueError(f'OIDC {what} failed with {exc.code}: {body}') from exc
        except URLError as exc:
            raise ValueError(f'OIDC {what} network error: {exc.reason}') from exc

    def discovery(self) -> dict:
        now = time.monotonic()
        if self._config and self._config_fetched_at and now - self._config_fetched_at < DISCOVERY_CACHE_SECONDS:
            return self._config
        req = Request(
            url=f'{self.issuer_url}/.well-known/openid-configuration',
            headers={'Accept': 'application/json'},
            method='GET',
        )
        self._config = self._request_json(req, what='discovery')
        self._config_fetched_at = now
        logger.info('Fetched OIDC configuration from %s', self.issuer_url)
        return self._config

    def authorization_url(self, *, redirect_uri: str, state: str, nonce: str) -> str:
        params = {
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': redirect_uri,
            'scope': self.scopes,
            'state': state,
            'nonce': nonce,
            'prompt': 'login consent',
        }
        return f"{self.discovery()['authorization_endpoint']}?{urlencode(params)}"

    def _token_request(self, data: dict, *, what: str) -> TokenSet:
        data = {**data, 'client_id': self.client_id}
        if self.client_secret:
            data['client_secret'] = self.client_secret
        req = Request(
            url=self.discovery()['token_endpoint'],
            data=urlencode(data).encode('utf-8'),
            headers={'Content-Type': 'application/x-www-form-urlencoded', 'Accept': 'application/json'},
            method='POST',
        )
        parsed = self._request_json(req, what=what)
        access_token = parsed.get('access_token')
        if not access_token:
            raise ValueError(f'OIDC {what} returned no access token')
        expires_in = int(parsed.get('expires_in') or 3600)
        return TokenSet(
            access_token=access_token,
            refresh_token=parsed.get('refresh_token'),
            expires_at=int(time.time()) + expires_in,
            id_token=parsed.get('id_token'),
        )

    def exchange_code(self, *, code: str, redirect_uri: str) -> TokenSet:
        return self._token_request(
            {'grant_type': 'authorization_code', 'code': code, 'redirect_uri': redirect_uri},
            what='code exchange',
        )

    def refresh(self, refresh_token: str) -> TokenSet:
        return self._token_request(
            {'grant_type': 'refresh_token', 'refresh_token': refresh_token},
            what='token refresh',
        )

    def userinfo(self, access_token: str) -> dict:
        req = Request(
            url=self.discovery()['userinfo_endpoint'],
            headers={'Authorization': f'Bearer {access_token}', 'Accept': 'application/json'},
            method='GET',
        )
        claims = self._request_json(req, what='userinfo')
        if not claims.get('sub'):
            raise ValueError('OIDC userinfo response has no subject claim')
        return claims

    def end_session_url(self, *, post_logout_redirect_uri: str) -> str | None:
        endpoint = self.discovery().get('end_session_endpoint')
        if not endpoint:
            return None
        params = {'client_id': self.client_id, 'post_logout_redirect_uri': post_logout_redirect_uri}
        return f'{endpoint}?{urlencode(params)}'


def new_state() -> str:
    return secrets.token_urlsafe(32)


@lru_cache(maxsize=1)
def get_oidc_client() -> OidcClient | None:
    if not settings.oidc_enabled:
        return None
    return OidcClient(
        issuer_url=settings.issuer_url,
        client_id=settings.oidc_client_id,
        client_secret=settings.oidc_client_secret,
        scopes=settings.oidc_scopes,
        timeout_seconds=settings.oidc_timeout_seconds,
    )
