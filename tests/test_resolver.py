"""Tests for orgbase.multitenancy.resolver - request to tenant resolution."""

from __future__ import annotations

import pytest

from conftest import StaticRegistry, make_tenant
from orgbase.multitenancy.errors import (
    InactiveTenantError,
    ResolutionError,
    TenantNotFoundError,
    TenantNotSpecifiedError,
    ValidationError,
)
from orgbase.multitenancy.resolver import (
    IdentifierKind,
    RequestDescriptor,
    ResolverConfig,
    Strategy,
    TenantResolver,
    extract_subdomain,
    is_ipv4,
    is_loopback,
    strip_port,
)
from orgbase.multitenancy.tenant import TenantStatus


@pytest.fixture
def tenants_registry() -> StaticRegistry:
    return StaticRegistry(
        make_tenant("acme", domain="acme.com"),
        make_tenant("globex", domain="shop.globex.io"),
        make_tenant("dormant", status=TenantStatus.INACTIVE),
    )


@pytest.fixture
def resolver(tenants_registry) -> TenantResolver:
    return TenantResolver(tenants_registry, ResolverConfig())


# ===========================================================================
# Host helpers
# ===========================================================================


class TestHostHelpers:
    @pytest.mark.parametrize(
        "host,expected",
        [
            ("acme.example.com", "acme.example.com"),
            ("acme.example.com:8080", "acme.example.com"),
            ("ACME.Example.com", "acme.example.com"),
            ("[::1]:8000", "::1"),
            ("::1", "::1"),
        ],
    )
    def test_strip_port(self, host, expected):
        assert strip_port(host) == expected

    def test_loopback(self):
        assert is_loopback("localhost:3000")
        assert is_loopback("127.0.0.1")
        assert not is_loopback("acme.com")

    def test_ipv4(self):
        assert is_ipv4("10.0.0.7:80")
        assert not is_ipv4("acme.com")

    @pytest.mark.parametrize(
        "host,expected",
        [
            ("acme.example.com", "acme"),
            ("acme.example.com:8443", "acme"),
            ("example.com", None),
            ("localhost", None),
            ("192.168.1.10", None),
            ("", None),
        ],
    )
    def test_extract_subdomain(self, host, expected):
        assert extract_subdomain(host) == expected


# ===========================================================================
# Strategy chain
# ===========================================================================


class TestExtract:
    """Strategy precedence: header, route param, subdomain, domain."""

    def test_header_wins(self, resolver):
        identifier = resolver.extract(
            RequestDescriptor(
                headers={"X-Tenant-Slug": "acme"},
                path_params={"tenant_slug": "globex"},
                host="other.example.com",
            )
        )
        assert identifier.value == "acme"
        assert identifier.strategy == Strategy.HEADER
        assert identifier.kind == IdentifierKind.SLUG

    def test_route_param_beats_host(self, resolver):
        identifier = resolver.extract(
            RequestDescriptor(path_params={"tenant_slug": "globex"}, host="acme.example.com")
        )
        assert identifier.value == "globex"
        assert identifier.strategy == Strategy.ROUTE_PARAM

    def test_subdomain(self, resolver):
        identifier = resolver.extract(RequestDescriptor(host="acme.example.com"))
        assert identifier.value == "acme"
        assert identifier.strategy == Strategy.SUBDOMAIN

    def test_blank_header_is_ignored(self, resolver):
        identifier = resolver.extract(
            RequestDescriptor(headers={"x-tenant-slug": "  "}, host="acme.example.com")
        )
        assert identifier.strategy == Strategy.SUBDOMAIN

    @pytest.mark.parametrize("host", ["www.acme.com", "api.acme.com"])
    def test_reserved_subdomain_falls_through_to_domain(self, resolver, host):
        identifier = resolver.extract(RequestDescriptor(host=host))
        assert identifier.kind == IdentifierKind.DOMAIN
        assert identifier.value == host

    def test_two_label_host_is_domain(self, resolver):
        identifier = resolver.extract(RequestDescriptor(host="acme.com:443"))
        assert identifier.kind == IdentifierKind.DOMAIN
        assert identifier.value == "acme.com"

    @pytest.mark.parametrize("host", ["localhost", "localhost:8000", "127.0.0.1", "10.1.2.3:80", ""])
    def test_local_hosts_yield_nothing(self, resolver, host):
        assert resolver.extract(RequestDescriptor(host=host)) is None

    def test_disabled_strategies(self, tenants_registry):
        resolver = TenantResolver(
            tenants_registry,
            ResolverConfig(subdomain_extraction=False, domain_extraction=False),
        )
        assert resolver.extract(RequestDescriptor(host="acme.example.com")) is None

    def test_custom_header_name(self, tenants_registry):
        resolver = TenantResolver(tenants_registry, ResolverConfig(header_name="x-org"))
        identifier = resolver.extract(RequestDescriptor(headers={"X-Org": "acme"}))
        assert identifier.value == "acme"


# ===========================================================================
# Resolution
# ===========================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_by_header(self, resolver):
        resolution = await resolver.resolve(RequestDescriptor(headers={"x-tenant-slug": "acme"}))
        assert resolution.tenant.slug == "acme"
        assert resolution.context.tenant_id == "id-acme"
        assert resolution.context.tenant_slug == "acme"
        assert resolution.response_headers() == {
            "x-tenant-id": "id-acme",
            "x-tenant-slug": "acme",
        }

    @pytest.mark.asyncio
    async def test_resolve_by_custom_domain(self, tenants_registry):
        resolver = TenantResolver(tenants_registry, ResolverConfig(subdomain_extraction=False))
        resolution = await resolver.resolve(RequestDescriptor(host="shop.globex.io:443"))
        assert resolution.tenant.slug == "globex"
        assert resolution.identifier.kind == IdentifierKind.DOMAIN

    @pytest.mark.asyncio
    async def test_resolve_by_two_label_domain(self, resolver):
        resolution = await resolver.resolve(RequestDescriptor(host="acme.com"))
        assert resolution.tenant.slug == "acme"
        assert resolution.identifier.strategy == Strategy.DOMAIN

    @pytest.mark.asyncio
    async def test_resolve_by_www_domain_falls_to_domain_lookup(self, tenants_registry):
        tenants_registry.add(make_tenant("initech", domain="www.initech.com"))
        resolver = TenantResolver(tenants_registry)
        resolution = await resolver.resolve(RequestDescriptor(host="www.initech.com"))
        assert resolution.tenant.slug == "initech"

    @pytest.mark.asyncio
    async def test_missing_identifier_required(self, resolver):
        with pytest.raises(TenantNotSpecifiedError):
            await resolver.resolve(RequestDescriptor(host="localhost"))

    @pytest.mark.asyncio
    async def test_missing_identifier_optional(self, tenants_registry):
        resolver = TenantResolver(tenants_registry, ResolverConfig(required=False))
        assert await resolver.resolve(RequestDescriptor(host="localhost")) is None

    @pytest.mark.asyncio
    async def test_required_override(self, resolver):
        assert await resolver.resolve(RequestDescriptor(), required=False) is None

    @pytest.mark.asyncio
    async def test_unknown_slug(self, resolver):
        with pytest.raises(TenantNotFoundError, match="slug 'ghost'"):
            await resolver.resolve(RequestDescriptor(headers={"x-tenant-slug": "ghost"}))

    @pytest.mark.asyncio
    async def test_unknown_subdomain_does_not_fall_through(self, resolver):
        with pytest.raises(TenantNotFoundError):
            await resolver.resolve(RequestDescriptor(host="ghost.acme.com"))

    @pytest.mark.asyncio
    async def test_inactive_tenant(self, resolver):
        with pytest.raises(InactiveTenantError) as exc_info:
            await resolver.resolve(RequestDescriptor(headers={"x-tenant-slug": "dormant"}))
        assert exc_info.value.status == "inactive"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_malformed_slug(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.resolve(RequestDescriptor(headers={"x-tenant-slug": "Acme!"}))

    @pytest.mark.asyncio
    async def test_registry_failure(self):
        registry = StaticRegistry(make_tenant("acme"), fail_with=RuntimeError("boom"))
        resolver = TenantResolver(registry)
        with pytest.raises(ResolutionError):
            await resolver.resolve(RequestDescriptor(headers={"x-tenant-slug": "acme"}))
