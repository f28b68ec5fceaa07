"""
Tenant resolution from an inbound request.

The resolver turns a framework-neutral :class:`RequestDescriptor` into a
:class:`TenantResolution`. It applies a fixed strategy chain and stops at
the first strategy that yields an identifier:

    1. Header (``x-tenant-slug`` by default)       -> slug
    2. Route parameter (``tenant_slug`` by default) -> slug
    3. Subdomain, when the host has >= 3 labels    -> slug
       (reserved labels such as ``www`` and ``api`` never match)
    4. Full host, unless localhost or an IPv4      -> domain

The identifier is then looked up in the registry; missing tenants raise
:class:`TenantNotFoundError` and non-active ones
:class:`InactiveTenantError`.

Example:
    resolver = TenantResolver(registry, ResolverConfig(required=True))
    resolution = await resolver.resolve(
        RequestDescriptor(headers={"x-tenant-slug": "acme"}, host="api.example.com")
    )
    resolution.context  # TenantContext(tenant_id=..., tenant_slug="acme")
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping
import logging
import re

from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.errors import (
    InactiveTenantError,
    ResolutionError,
    TenancyError,
    TenantNotFoundError,
    TenantNotSpecifiedError,
)
from orgbase.multitenancy.registry import TenantRegistry
from orgbase.multitenancy.tenant import TenantRecord, validate_slug

logger = logging.getLogger(__name__)

_IPV4 = re.compile(r"^(?:[0-9]{1,3}\.){3}[0-9]{1,3}$")
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})

TENANT_ID_HEADER = "x-tenant-id"
TENANT_SLUG_HEADER = "x-tenant-slug"


class IdentifierKind(str, Enum):
    SLUG = "slug"
    DOMAIN = "domain"


class Strategy(str, Enum):
    HEADER = "header"
    ROUTE_PARAM = "route_param"
    SUBDOMAIN = "subdomain"
    DOMAIN = "domain"


@dataclass(frozen=True)
class TenantIdentifier:
    """An identifier extracted from a request, before registry lookup."""

    value: str
    kind: IdentifierKind
    strategy: Strategy


@dataclass
class RequestDescriptor:
    """The parts of an HTTP request tenant resolution looks at.

    Attributes:
        headers: Request headers; names are matched case-insensitively.
        path_params: Route parameters matched by the router.
        host: Value of the Host header, possibly with a port.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    path_params: Mapping[str, str] = field(default_factory=dict)
    host: str = ""

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass
class ResolverConfig:
    """Which strategies run and whether a tenant is mandatory."""

    header_name: str = TENANT_SLUG_HEADER
    route_param: str = "tenant_slug"
    subdomain_extraction: bool = True
    domain_extraction: bool = True
    required: bool = True
    reserved_subdomains: tuple[str, ...] = ("www", "api")


@dataclass(frozen=True)
class TenantResolution:
    """Outcome of a successful resolution."""

    tenant: TenantRecord
    context: TenantContext
    identifier: TenantIdentifier

    def response_headers(self) -> dict[str, str]:
        """Diagnostic headers echoing the resolved tenant."""
        return {
            TENANT_ID_HEADER: self.context.tenant_id,
            TENANT_SLUG_HEADER: self.context.tenant_slug,
        }


def strip_port(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("["):
        # [::1]:8080
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def is_loopback(host: str) -> bool:
    return strip_port(host) in _LOOPBACK_HOSTS


def is_ipv4(host: str) -> bool:
    return bool(_IPV4.match(strip_port(host)))


def extract_subdomain(host: str) -> str | None:
    """Return the first label of ``host`` when it has at least three."""
    hostname = strip_port(host)
    if not hostname or is_ipv4(hostname):
        return None
    labels = hostname.split(".")
    if len(labels) < 3 or not labels[0]:
        return None
    return labels[0]


class TenantResolver:
    """Resolves request descriptors to tenants via the registry.

    Attributes:
        registry: Where identifiers are looked up.
        config: Strategy switches and the required flag.
    """

    def __init__(self, registry: TenantRegistry, config: ResolverConfig | None = None):
        self.registry = registry
        self.config = config or ResolverConfig()
        self._reserved = frozenset(s.lower() for s in self.config.reserved_subdomains)

    def extract(self, request: RequestDescriptor) -> TenantIdentifier | None:
        """Apply the strategy chain; first match wins.

        Returns:
            The identifier, or None when no strategy matched.
        """
        value = _clean(request.header(self.config.header_name))
        if value:
            return TenantIdentifier(value, IdentifierKind.SLUG, Strategy.HEADER)

        value = _clean(request.path_params.get(self.config.route_param))
        if value:
            return TenantIdentifier(value, IdentifierKind.SLUG, Strategy.ROUTE_PARAM)

        host = request.host or ""
        if self.config.subdomain_extraction:
            subdomain = extract_subdomain(host)
            if subdomain and subdomain not in self._reserved:
                return TenantIdentifier(subdomain, IdentifierKind.SLUG, Strategy.SUBDOMAIN)

        if self.config.domain_extraction:
            hostname = strip_port(host)
            if hostname and not is_loopback(hostname) and not is_ipv4(hostname):
                return TenantIdentifier(hostname, IdentifierKind.DOMAIN, Strategy.DOMAIN)

        return None

    async def resolve(
        self, request: RequestDescriptor, required: bool | None = None
    ) -> TenantResolution | None:
        """Resolve the tenant a request is addressed to.

        Args:
            request: The request to inspect.
            required: Overrides ``config.required`` for this call.

        Returns:
            The resolution, or None when no identifier was found and
            resolution is optional.

        Raises:
            TenantNotSpecifiedError: No identifier and resolution required.
            ValidationError: Slug identifier outside ``[a-z0-9-]``.
            TenantNotFoundError: No tenant for the identifier.
            InactiveTenantError: Tenant exists but is not active.
            ResolutionError: The registry failed unexpectedly.
        """
        identifier = self.extract(request)
        if identifier is None:
            if self.config.required if required is None else required:
                raise TenantNotSpecifiedError()
            return None

        tenant = await self._lookup(identifier)
        if tenant is None:
            logger.info(
                f"Tenant lookup miss: {identifier.kind.value}={identifier.value!r} "
                f"(via {identifier.strategy.value})"
            )
            raise TenantNotFoundError(
                f"Organization with {identifier.kind.value} '{identifier.value}' not found"
            )
        if not tenant.is_active:
            raise InactiveTenantError(tenant.name, tenant.status.value)

        context = TenantContext(tenant_id=tenant.id, tenant_slug=tenant.slug)
        logger.debug(f"Resolved tenant {tenant.slug} via {identifier.strategy.value}")
        return TenantResolution(tenant=tenant, context=context, identifier=identifier)

    async def _lookup(self, identifier: TenantIdentifier) -> TenantRecord | None:
        if identifier.kind == IdentifierKind.SLUG:
            slug = validate_slug(identifier.value)
            lookup = self.registry.get_by_slug(slug)
        else:
            lookup = self.registry.get_by_domain(identifier.value)
        try:
            return await lookup
        except TenancyError:
            raise
        except Exception as e:
            logger.exception(f"Tenant registry lookup failed for {identifier.value!r}")
            raise ResolutionError(cause=type(e).__name__) from e

    def __repr__(self) -> str:
        return f"<TenantResolver header={self.config.header_name} required={self.config.required}>"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None
