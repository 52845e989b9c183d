"""Capability registry - method slugs resolved to descriptors."""

from src.capabilities.registry import (
    CapabilityDescriptor,
    CapabilityRegistry,
    ExtractionDescriptor,
    ValueType,
)

__all__ = [
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "ExtractionDescriptor",
    "ValueType",
]
