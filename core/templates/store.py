"""Read-only template store contract consumed by the resolver."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from core.templates.models import ImportTemplate, InheritanceRelationship


class TemplateStore(Protocol):
    """Snapshot access to templates and their inheritance edges."""

    def get_template(self, template_id: str) -> ImportTemplate | None:
        """Return the template or ``None`` when unknown."""

    def get_parent_id(self, template_id: str) -> str | None:
        """Return the declared parent id or ``None`` for a root."""

    def get_child_relationships(self, parent_id: str) -> list[InheritanceRelationship]:
        """Return edges whose parent is ``parent_id``."""


class InMemoryTemplateStore:
    """Immutable in-process snapshot implementing ``TemplateStore``."""

    def __init__(
        self,
        templates: Iterable[ImportTemplate],
        relationships: Iterable[InheritanceRelationship] = (),
    ) -> None:
        self._templates = {template.id: template for template in templates}
        self._relationships: dict[str, list[InheritanceRelationship]] = {}
        self._parents: dict[str, str] = {}

        for template in self._templates.values():
            if template.parent_id is not None:
                self._parents[template.id] = template.parent_id

        for relationship in relationships:
            self._relationships.setdefault(relationship.parent_id, []).append(relationship)
            self._parents[relationship.child_id] = relationship.parent_id

    def get_template(self, template_id: str) -> ImportTemplate | None:
        return self._templates.get(template_id)

    def get_parent_id(self, template_id: str) -> str | None:
        return self._parents.get(template_id)

    def get_child_relationships(self, parent_id: str) -> list[InheritanceRelationship]:
        declared = list(self._relationships.get(parent_id, []))
        declared_children = {relationship.child_id for relationship in declared}
        for child_id, declared_parent in sorted(self._parents.items()):
            if declared_parent == parent_id and child_id not in declared_children:
                declared.append(InheritanceRelationship(child_id=child_id, parent_id=parent_id))
        return declared

    def list_templates(self, *, active_only: bool = False) -> list[ImportTemplate]:
        templates = [self._templates[key] for key in sorted(self._templates)]
        if active_only:
            return [template for template in templates if template.is_active]
        return templates
