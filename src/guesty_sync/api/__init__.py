"""Guesty API access: token cache and listings client."""

from guesty_sync.api.client import GuestyClient
from guesty_sync.api.token_cache import AccessToken, TokenCache

__all__ = ["AccessToken", "GuestyClient", "TokenCache"]
