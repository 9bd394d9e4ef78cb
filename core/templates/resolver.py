"""Effective template resolution over the parent/child inheritance graph."""

from __future__ import annotations

import logging
from collections import deque

from core.templates.models import (
    EffectiveTemplate,
    ImportTemplate,
    InheritanceConfig,
    TemplateField,
    TemplateMatchingHints,
)
from core.templates.store import TemplateStore
from core.utils.errors import CycleDetectedError, MissingAncestorError
from core.utils.events import log_event

logger = logging.getLogger("docmatch.resolver")


class InheritanceResolver:
    """Read-only walker that flattens a template's ancestor chain.

    The resolver never writes to the store; every call re-reads the chain.
    """

    def __init__(self, store: TemplateStore) -> None:
        self._store = store

    def resolve(self, template_id: str) -> EffectiveTemplate | None:
        """Return the effective template, or ``None`` when the id is unknown."""

        target = self._store.get_template(template_id)
        if target is None:
            log_event(logger, logging.INFO, "resolve_not_found", template_id=template_id)
            return None

        chain = self._walk_to_root(target)
        fields, origins = _merge_chain(chain, self._edge_config)

        supported_formats = next(
            (template.supported_formats for template in reversed(chain) if template.supported_formats),
            (),
        )
        matching = next(
            (template.matching for template in reversed(chain) if not template.matching.is_empty()),
            TemplateMatchingHints(),
        )

        effective = EffectiveTemplate(
            template=target,
            fields=tuple(fields),
            own_fields=target.fields,
            ancestor_chain=tuple(template.id for template in chain),
            field_origins=origins,
            supported_formats=supported_formats,
            matching=matching,
        )
        log_event(
            logger,
            logging.DEBUG,
            "resolved",
            template_id=template_id,
            chain=list(effective.ancestor_chain),
            field_count=len(effective.fields),
            inherited_count=len(effective.inherited_field_names()),
        )
        return effective

    def inheritance_chain(self, template_id: str) -> list[str]:
        """Return ids root -> target; empty when the template is unknown."""

        target = self._store.get_template(template_id)
        if target is None:
            return []
        return [template.id for template in self._walk_to_root(target)]

    def would_create_cycle(self, child_id: str, parent_id: str) -> bool:
        """Check whether adding ``child_id -> parent_id`` closes a loop."""

        if child_id == parent_id:
            return True

        visited: set[str] = set()
        current: str | None = parent_id
        while current is not None:
            if current == child_id:
                return True
            if current in visited:
                log_event(
                    logger,
                    logging.WARNING,
                    "existing_cycle",
                    child_id=child_id,
                    parent_id=parent_id,
                    revisited=current,
                )
                return False
            visited.add(current)
            current = self._store.get_parent_id(current)
        return False

    def descendants(self, template_id: str) -> list[str]:
        """Breadth-first ids of every template inheriting from ``template_id``."""

        ordered: list[str] = []
        seen = {template_id}
        queue = deque([template_id])
        while queue:
            parent_id = queue.popleft()
            for relationship in self._store.get_child_relationships(parent_id):
                if relationship.child_id in seen:
                    continue
                seen.add(relationship.child_id)
                ordered.append(relationship.child_id)
                queue.append(relationship.child_id)
        return ordered

    def _walk_to_root(self, target: ImportTemplate) -> list[ImportTemplate]:
        upward = [target]
        visited = {target.id}
        current = target

        while True:
            parent_id = self._store.get_parent_id(current.id)
            if parent_id is None:
                break
            if parent_id in visited:
                cycle = [template.id for template in upward] + [parent_id]
                log_event(logger, logging.ERROR, "cycle_detected", chain=cycle)
                raise CycleDetectedError(
                    f"Inheritance cycle detected: {' -> '.join(cycle)}", chain=cycle
                )
            parent = self._store.get_template(parent_id)
            if parent is None:
                log_event(
                    logger,
                    logging.ERROR,
                    "missing_ancestor",
                    template_id=parent_id,
                    child_id=current.id,
                )
                raise MissingAncestorError(
                    f"Template {current.id} references missing parent {parent_id}",
                    template_id=parent_id,
                    child_id=current.id,
                )
            upward.append(parent)
            visited.add(parent_id)
            current = parent

        upward.reverse()
        return upward

    def _edge_config(self, parent_id: str, child_id: str) -> InheritanceConfig:
        for relationship in self._store.get_child_relationships(parent_id):
            if relationship.child_id == child_id:
                return relationship.config
        return InheritanceConfig()


def _merge_chain(chain: list[ImportTemplate], edge_config) -> tuple[list[TemplateField], dict[str, str]]:
    root = chain[0]
    fields = list(root.fields)
    origins = {field.name: root.id for field in root.fields}

    for parent, child in zip(chain, chain[1:]):
        config = edge_config(parent.id, child.id)
        fields, origins = _apply_child(fields, origins, child, config)

    return fields, origins


def _apply_child(
    inherited: list[TemplateField],
    origins: dict[str, str],
    child: ImportTemplate,
    config: InheritanceConfig,
) -> tuple[list[TemplateField], dict[str, str]]:
    merged = [field for field in inherited if config.inherits(field.field_type)]
    merged_origins = {field.name: origins[field.name] for field in merged}
    positions = {field.name: index for index, field in enumerate(merged)}
    child_names = {field.name for field in child.fields}

    for field in child.fields:
        if field.name not in positions:
            positions[field.name] = len(merged)
            merged.append(field)
            merged_origins[field.name] = child.id
            continue

        if field.field_type in config.append_only_field_types:
            renamed = _unique_name(field.name, set(positions) | child_names)
            positions[renamed] = len(merged)
            merged.append(field.model_copy(update={"name": renamed}))
            merged_origins[renamed] = child.id
            continue

        if config.override_policy == "keep_parent":
            continue

        merged[positions[field.name]] = field
        merged_origins[field.name] = child.id

    return merged, merged_origins


def _unique_name(name: str, taken: set[str]) -> str:
    suffix = 2
    while f"{name}_{suffix}" in taken:
        suffix += 1
    return f"{name}_{suffix}"
