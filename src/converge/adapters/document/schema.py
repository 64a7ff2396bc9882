"""Pydantic models describing declaration documents.

A document is a mapping with optional ``variables``, ``providers``,
``resources``, ``data`` and ``outputs`` sections. Resources and data nodes are
nested by type and then by name; their bodies are free-form attribute maps in
which ``depends_on`` and (for resources) ``lifecycle`` are reserved keys.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class VariablePayload(DocumentBaseModel):
    default: object = None
    sensitive: bool = False
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class LifecyclePayload(DocumentBaseModel):
    prevent_destroy: bool = False
    create_before_destroy: bool = False
    ignore_changes: list[str] = Field(default_factory=list)


class OutputPayload(DocumentBaseModel):
    value: object
    sensitive: bool = False
    description: str | None = None


type NodeBodies = dict[str, dict[str, dict[str, object]]]


class DocumentPayload(DocumentBaseModel):
    variables: dict[str, VariablePayload | None] = Field(default_factory=dict)
    providers: dict[str, dict[str, object]] = Field(default_factory=dict)
    resources: NodeBodies = Field(default_factory=dict)
    data: NodeBodies = Field(default_factory=dict)
    outputs: dict[str, OutputPayload] = Field(default_factory=dict)

    @field_validator("variables", "providers", "resources", "data", "outputs", mode="before")
    @classmethod
    def _empty_section(cls, value: object) -> object:
        return {} if value is None else value
