"""
Auth strategy resolution - turns a descriptor plus API key into header
and/or query-parameter additions.

Precedence: a declared header always wins. When a descriptor declares both
a header and a query parameter, the query parameter is omitted.
"""

import logging
from dataclasses import dataclass, field

from provider_bridge.descriptors import AuthKind, AuthSpec, ProviderDescriptor
from provider_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAuth:
    """The one authoritative auth strategy for a call."""

    kind: AuthKind
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


def select_strategy(auth: AuthSpec) -> AuthKind:
    """Pick the authoritative strategy for an auth declaration."""
    if auth.header:
        if (auth.scheme or "").lower() == "bearer":
            return AuthKind.BEARER
        return AuthKind.HEADER
    if auth.query_param:
        return AuthKind.QUERY
    return AuthKind.NONE


def resolve_auth(descriptor: ProviderDescriptor, api_key: str) -> ResolvedAuth:
    """
    Build the auth additions for one call.

    Raises:
        ConfigurationError: If the strategy needs a key and none was given
    """
    auth = descriptor.auth
    kind = select_strategy(auth)
    key = (api_key or "").strip()

    if kind != AuthKind.NONE and not key:
        raise ConfigurationError(
            f"API key required for {descriptor.name}", provider_id=descriptor.id
        )
    if auth.header and auth.query_param:
        logger.debug(
            f"{descriptor.id}: header auth declared, ignoring query param '{auth.query_param}'"
        )

    if kind == AuthKind.BEARER:
        return ResolvedAuth(kind, headers={auth.header: f"Bearer {key}"})
    elif kind == AuthKind.HEADER:
        value = f"{auth.scheme} {key}" if auth.scheme else key
        return ResolvedAuth(kind, headers={auth.header: value})
    elif kind == AuthKind.QUERY:
        return ResolvedAuth(kind, params={auth.query_param: key})
    elif kind == AuthKind.NONE:
        return ResolvedAuth(kind)
    else:
        raise ConfigurationError(f"Unsupported auth strategy: {kind}", provider_id=descriptor.id)
