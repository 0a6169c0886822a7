"""
Resource registry.
Maps Terraform resource types to the builders that turn their attributes into
priced resources.
"""
from typing import Dict, Any, Callable, Iterable, List, Optional
from dataclasses import dataclass, field
import logging

from costengine.domain.cost_models import UNSUPPORTED_MESSAGE, Project, Resource


logger = logging.getLogger(__name__)


DEFAULT_REGION = "us-east-1"


@dataclass
class ResourceData:
    """Attributes of one declared resource, as read from a plan or state."""
    address: str
    resource_type: str
    region: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute value, treating None and "" as unset."""
        value = self.attributes.get(key)
        if value is None or value == "":
            return default
        return value

    @property
    def region_or_default(self) -> str:
        return self.region or DEFAULT_REGION


Builder = Callable[[ResourceData], Resource]


class ResourceRegistry:
    """Dispatch table from resource type to builder."""

    def __init__(self):
        self._builders: Dict[str, Builder] = {}

    def register(self, resource_type: str) -> Callable[[Builder], Builder]:
        """
        Decorator registering a builder for a resource type.

        Raises:
            ValueError: If the type already has a builder
        """
        def decorator(builder: Builder) -> Builder:
            if resource_type in self._builders:
                raise ValueError(f"A builder for '{resource_type}' is already registered")
            self._builders[resource_type] = builder
            return builder
        return decorator

    def supports(self, resource_type: str) -> bool:
        return resource_type in self._builders

    @property
    def resource_types(self) -> List[str]:
        return sorted(self._builders)

    def build(self, data: ResourceData) -> Resource:
        """
        Build the priced resource for one declared resource.

        Types without a builder become skipped, no-price resources so they
        show up as unsupported in the project summary.
        """
        builder = self._builders.get(data.resource_type)
        if builder is None:
            logger.debug(f"No builder for resource type '{data.resource_type}' ({data.address})")
            return Resource(
                address=data.address,
                resource_type=data.resource_type,
                no_price=True,
                is_skipped=True,
                skip_message=UNSUPPORTED_MESSAGE,
            )

        resource = builder(data)
        if not resource.resource_type:
            resource.resource_type = data.resource_type
        return resource

    def build_project(
        self,
        name: str,
        resources: Iterable[ResourceData],
        currency: str = "USD"
    ) -> Project:
        """Build a project from declared resources, in the order given."""
        return Project(
            name=name,
            resources=[self.build(data) for data in resources],
            currency=currency,
        )


registry = ResourceRegistry()
