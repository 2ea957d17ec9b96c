"""
Service registry: logical service name -> base URL.

Fixed at startup from settings.
"""

from collections.abc import Iterator, Mapping

from chaos_controller.chaos.errors import UnknownFault, UnknownService
from chaos_controller.chaos.models import FaultKind, ServiceName
from chaos_controller.config import Settings


class ServiceRegistry:
    """Immutable mapping of registered services to their base URLs."""

    def __init__(self, urls: Mapping[ServiceName, str]) -> None:
        self._urls = {ServiceName(name): url.rstrip("/") for name, url in urls.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceRegistry":
        return cls({ServiceName(name): url for name, url in settings.service_urls.items()})

    def __iter__(self) -> Iterator[ServiceName]:
        return iter(self._urls)

    def __len__(self) -> int:
        return len(self._urls)

    def __contains__(self, name: object) -> bool:
        try:
            return ServiceName(name) in self._urls
        except ValueError:
            return False

    @property
    def names(self) -> list[ServiceName]:
        return list(self._urls)

    def base_url(self, service: ServiceName | str) -> str:
        return self._urls[self.resolve(service)]

    def chaos_url(self, service: ServiceName | str) -> str:
        """Endpoint accepting a fault-state delta."""
        return f"{self.base_url(service)}/chaos/set"

    def health_url(self, service: ServiceName | str) -> str:
        """Endpoint reporting health and, optionally, current chaos state."""
        return f"{self.base_url(service)}/health"

    def resolve(self, service: ServiceName | str) -> ServiceName:
        """
        Map a raw name onto a registered ServiceName.

        Raises:
            UnknownService: name is not an enumerated or registered service
        """
        try:
            name = ServiceName(service)
        except ValueError:
            raise UnknownService(str(service)) from None
        if name not in self._urls:
            raise UnknownService(name.value)
        return name

    def as_dict(self) -> dict[str, str]:
        return {name.value: url for name, url in self._urls.items()}


def resolve_fault(fault: FaultKind | str) -> FaultKind:
    """
    Map a raw fault name onto a FaultKind.

    Raises:
        UnknownFault: name is not a known fault kind
    """
    try:
        return FaultKind(fault)
    except ValueError:
        raise UnknownFault(str(fault)) from None
