"""Desired-configuration models: opaque resource units and outputs.

A ``ResourceSpec`` is an opaque unit: a cloud type name, a natural
identifier and a property document. Properties may contain references to
another resource's observed attributes; those are written with ``ref()`` and
only resolved at apply time, so a plan compares unresolved documents.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

REF_MARKER = "Ref"
JSON_MARKER = "Json"


def ref(resource_key: str, attribute: str) -> dict[str, Any]:
    """Reference *attribute* of the resource tracked under *resource_key*."""
    return {REF_MARKER: {"key": resource_key, "attribute": attribute}}


def as_json(value: Any) -> dict[str, Any]:
    """Render *value* (after reference resolution) as a JSON string."""
    return {JSON_MARKER: value}


def referenced_keys(value: Any) -> set[str]:
    """Collect every resource key referenced anywhere inside *value*."""
    found: set[str] = set()
    if isinstance(value, dict):
        if set(value) == {REF_MARKER}:
            found.add(value[REF_MARKER]["key"])
            return found
        for item in value.values():
            found |= referenced_keys(item)
    elif isinstance(value, list):
        for item in value:
            found |= referenced_keys(item)
    return found


class ResourceSpec(BaseModel):
    """One desired resource."""

    model_config = ConfigDict(frozen=True)

    key: str
    type_name: str
    identifier: str  # natural identifier used for lookup/import
    properties: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    adoptable: bool = False
    # Top-level property names excluded from change detection.
    ignore_changes: list[str] = Field(default_factory=list)
    # Top-level property names an import cannot observe; they are left out
    # of the imported record so the first plan after adoption writes them.
    write_on_adopt: list[str] = Field(default_factory=list)

    def dependencies(self) -> set[str]:
        """Explicit dependencies plus everything referenced in properties."""
        return set(self.depends_on) | referenced_keys(self.properties)


class OutputSpec(BaseModel):
    """A named value surfaced to downstream consumers after apply."""

    model_config = ConfigDict(frozen=True)

    name: str
    resource_key: str
    attribute: str


class DesiredStack(BaseModel):
    """The full desired configuration for one environment."""

    model_config = ConfigDict(frozen=True)

    resources: list[ResourceSpec] = Field(default_factory=list)
    outputs: list[OutputSpec] = Field(default_factory=list)

    def by_key(self) -> dict[str, ResourceSpec]:
        return {spec.key: spec for spec in self.resources}

    def adoptable(self) -> list[ResourceSpec]:
        return [spec for spec in self.resources if spec.adoptable]
