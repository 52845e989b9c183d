"""
Capability registry.

Maps a method identifier to a declarative capability descriptor: the
category tag used for conflict detection, the rule for pulling a value
out of the execution result, and the name under which the unit of work
is passed to the execution engine.
"""

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from src.core.exceptions import MethodNotCapable


class ValueType(str, Enum):
    """Type of value an extraction descriptor produces."""

    TEXT = "text"
    URL = "url"


class ExtractionDescriptor(BaseModel):
    """Declarative rule describing how to pull a value out of a result payload.

    Example:
        >>> ExtractionDescriptor(path="data.items[0].value", value_type="url")
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    value_type: ValueType = ValueType.TEXT


class CapabilityDescriptor(BaseModel):
    """An externally executed operation identified by its slug."""

    model_config = ConfigDict(frozen=True)

    slug: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="Capability category tag")
    extraction: ExtractionDescriptor
    name: str | None = None
    description: str | None = None
    unit_parameter: str = Field(
        default="imageUrl",
        description="Parameter name receiving the unit-of-work reference",
    )


class CapabilityRegistry:
    """
    Lookup table of capability descriptors keyed by slug.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.register(CapabilityDescriptor(
        ...     slug="joycaption",
        ...     type="caption",
        ...     extraction=ExtractionDescriptor(path="text", value_type="text"),
        ... ))
        >>> registry.resolve("joycaption").type
        'caption'
    """

    def __init__(self, capabilities: list[CapabilityDescriptor] | None = None) -> None:
        self._capabilities: dict[str, CapabilityDescriptor] = {}
        for capability in capabilities or []:
            self.register(capability)

    def register(self, capability: CapabilityDescriptor) -> None:
        """Register or replace a capability."""
        if capability.slug in self._capabilities:
            logger.debug(f"Replacing capability definition: {capability.slug}")
        self._capabilities[capability.slug] = capability

    def unregister(self, slug: str) -> None:
        """Remove a capability, if present."""
        self._capabilities.pop(slug, None)

    def resolve(self, slug: str) -> CapabilityDescriptor | None:
        """Get a capability by slug, or None when unknown."""
        return self._capabilities.get(slug)

    def require(self, slug: str) -> CapabilityDescriptor:
        """
        Get a capability by slug.

        Raises:
            MethodNotCapable: If the slug is unknown.
        """
        capability = self.resolve(slug)
        if capability is None:
            raise MethodNotCapable(slug)
        return capability

    def list_capabilities(self, capability_type: str | None = None) -> list[CapabilityDescriptor]:
        """List capabilities, optionally filtered by type, sorted by slug."""
        return sorted(
            (
                c
                for c in self._capabilities.values()
                if capability_type is None or c.type == capability_type
            ),
            key=lambda c: c.slug,
        )

    def __contains__(self, slug: object) -> bool:
        return slug in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    @classmethod
    def from_dicts(cls, entries: list[dict[str, Any]]) -> "CapabilityRegistry":
        """Build a registry from plain dictionaries."""
        return cls([CapabilityDescriptor.model_validate(entry) for entry in entries])

    @classmethod
    def from_yaml(cls, path: str | Path) -> "CapabilityRegistry":
        """
        Load a registry from a YAML catalogue.

        The file holds a ``capabilities`` list, each entry matching
        :class:`CapabilityDescriptor`.

        Args:
            path: Path to the YAML file.

        Returns:
            Populated CapabilityRegistry.
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        entries = data.get("capabilities", []) if isinstance(data, dict) else []
        registry = cls.from_dicts(entries)
        logger.info(f"Loaded {len(registry)} capabilities from {path}")
        return registry
