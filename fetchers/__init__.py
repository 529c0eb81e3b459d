"""Fetchers package for retrieving Confluence page trees via the REST API."""

from .base_fetcher import (
    BaseFetcher,
    FetcherError,
    MalformedContentError,
    NotFoundError,
    TransportError,
    UnauthorizedError
)
from .api_fetcher import ApiFetcher
from .session_auth import (
    BasicAuthenticator,
    BearerAuthenticator,
    CookieAuthenticator,
    SessionAuthenticator,
    create_authenticator
)

__all__ = [
    'ApiFetcher',
    'BaseFetcher',
    'BasicAuthenticator',
    'BearerAuthenticator',
    'CookieAuthenticator',
    'FetcherError',
    'MalformedContentError',
    'NotFoundError',
    'SessionAuthenticator',
    'TransportError',
    'UnauthorizedError',
    'create_authenticator'
]
