"""
Registry of org-scoped resource tables and their per-table options.

A table is declared once (model, payload schemas, options) and the registry
is then consumed by the CRUD factory, the router builder and the cascade
engine. The registry is built by the application factory and lives on
`app.state`; nothing here is module-level mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

from pydantic import BaseModel
from sqlmodel import SQLModel

from tenantgate.core.rate_limit import RateLimitConfig


@dataclass(frozen=True)
class AclFrom:
    """Inherit record permissions from the parent row `table[field]`."""

    field: str
    table: str


@dataclass(frozen=True)
class CascadeEdge:
    """Rows of `table` whose `foreign_key` points at a row of this table."""

    table: str
    foreign_key: str


@dataclass(frozen=True)
class OrgCrudOptions:
    acl: bool = False
    acl_from: Optional[AclFrom] = None
    cascade: tuple[CascadeEdge, ...] = ()
    rate_limit: Optional[RateLimitConfig] = None
    soft_delete: bool = False


@dataclass
class ResourceDefinition:
    name: str
    model: type[SQLModel]
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    options: OrgCrudOptions = field(default_factory=OrgCrudOptions)


def _has_column(model: type[SQLModel], name: str) -> bool:
    return name in model.model_fields


class ResourceRegistry:
    def __init__(self):
        self._definitions: dict[str, ResourceDefinition] = {}

    def register(
        self,
        name: str,
        model: type[SQLModel],
        create_schema: type[BaseModel],
        update_schema: type[BaseModel],
        options: Optional[OrgCrudOptions] = None,
    ) -> ResourceDefinition:
        options = options or OrgCrudOptions()
        if name in self._definitions:
            raise ValueError(f"resource '{name}' is already registered")
        for column in ("org_id", "user_id", "updated_at"):
            if not _has_column(model, column):
                raise ValueError(f"{model.__name__} has no '{column}' column")
        if options.acl and not _has_column(model, "editors"):
            raise ValueError(f"{model.__name__} uses acl but has no 'editors' column")
        if options.soft_delete and not _has_column(model, "deleted"):
            raise ValueError(f"{model.__name__} uses soft_delete but has no 'deleted' column")
        if options.acl_from and not _has_column(model, options.acl_from.field):
            raise ValueError(f"{model.__name__} has no '{options.acl_from.field}' column")

        definition = ResourceDefinition(name, model, create_schema, update_schema, options)
        self._definitions[name] = definition
        return definition

    def get(self, name: str) -> ResourceDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise KeyError(f"unknown resource table '{name}'") from None

    def validate(self) -> None:
        """Check that every referenced table is registered."""
        for definition in self:
            acl_from = definition.options.acl_from
            if acl_from:
                parent = self.get(acl_from.table)
                if not _has_column(parent.model, "editors"):
                    raise ValueError(
                        f"{definition.name} inherits acl from '{parent.name}', which has no editors"
                    )
            for edge in definition.options.cascade:
                child = self.get(edge.table)
                if not _has_column(child.model, edge.foreign_key):
                    raise ValueError(f"{child.model.__name__} has no '{edge.foreign_key}' column")

    def __iter__(self) -> Iterator[ResourceDefinition]:
        return iter(list(self._definitions.values()))

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
