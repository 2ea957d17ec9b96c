"""
Tests for the service registry and name resolution.
"""

import pytest

from chaos_controller.chaos.errors import UnknownFault, UnknownService
from chaos_controller.chaos.models import FaultKind, ServiceName
from chaos_controller.chaos.registry import ServiceRegistry, resolve_fault


class TestServiceRegistry:
    """Lookup of registered services."""

    def test_contains_all_four_services(self, registry: ServiceRegistry) -> None:
        assert len(registry) == 4
        assert set(registry.names) == set(ServiceName)

    def test_chaos_and_health_urls(self, registry: ServiceRegistry) -> None:
        assert registry.chaos_url("claims") == "http://claims.test/chaos/set"
        assert registry.health_url(ServiceName.POLICY) == "http://policy.test/health"

    def test_trailing_slash_is_stripped(self) -> None:
        registry = ServiceRegistry({ServiceName.CLAIMS: "http://claims.test/"})
        assert registry.chaos_url("claims") == "http://claims.test/chaos/set"

    def test_resolve_accepts_strings(self, registry: ServiceRegistry) -> None:
        assert registry.resolve("investment") is ServiceName.INVESTMENT

    def test_resolve_unknown_service(self, registry: ServiceRegistry) -> None:
        with pytest.raises(UnknownService) as exc_info:
            registry.resolve("billing")
        assert exc_info.value.to_dict()["error"] == "unknown_service"
        assert exc_info.value.to_dict()["service"] == "billing"

    def test_resolve_unregistered_service(self) -> None:
        """A known service name without a URL is still unknown to this registry."""
        registry = ServiceRegistry({ServiceName.CLAIMS: "http://claims.test"})
        with pytest.raises(UnknownService):
            registry.resolve("policy")
        assert "policy" not in registry
        assert "claims" in registry

    def test_all_is_not_a_service(self, registry: ServiceRegistry) -> None:
        assert "all" not in registry


class TestResolveFault:
    """Fault name resolution."""

    @pytest.mark.parametrize("fault", [f.value for f in FaultKind])
    def test_known_faults(self, fault: str) -> None:
        assert resolve_fault(fault).value == fault

    def test_unknown_fault(self) -> None:
        with pytest.raises(UnknownFault, match="Unknown fault: disk_full"):
            resolve_fault("disk_full")
