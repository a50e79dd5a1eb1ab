"""
Cascade configuration registry.

Declares which entity types are lifecycle-managed, which field marks deletion
and which dependents follow a parent through soft delete and restore. The
registry rejects any registration that would introduce a cycle, and is frozen
once the process has finished wiring it up.
"""

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .exceptions import (
    CascadeCycleError,
    NotConfiguredError,
    RegistryFrozenError,
)
from .models import CascadeConfig, CascadeEdge

logger = logging.getLogger(__name__)


class CascadeRegistry:
    """Registry of cascade configurations keyed by entity type."""

    def __init__(self, configs: Optional[Sequence[CascadeConfig]] = None):
        self._configs: Dict[str, CascadeConfig] = {}
        self._frozen = False
        for config in configs or ():
            self.register(config)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, config: CascadeConfig) -> None:
        """
        Register or replace the configuration for an entity type.

        Args:
            config: Cascade configuration to add

        Raises:
            RegistryFrozenError: If the registry has been frozen
            CascadeCycleError: If the new edges would close a cycle
        """
        if self._frozen:
            raise RegistryFrozenError(config.entity_type)

        candidate = dict(self._configs)
        candidate[config.entity_type] = config
        cycle = _find_cycle(candidate, config.entity_type)
        if cycle:
            raise CascadeCycleError(cycle)

        self._configs[config.entity_type] = config
        logger.debug(
            f"Registered cascade config for {config.entity_type}",
            extra={
                "entity_type": config.entity_type,
                "dependents": config.dependent_types,
            },
        )

    def freeze(self) -> "CascadeRegistry":
        """Make the registry read-only."""
        self._frozen = True
        return self

    def lookup(self, entity_type: str) -> CascadeConfig:
        """
        Get the configuration for an entity type.

        Raises:
            NotConfiguredError: If the type is not registered
        """
        try:
            return self._configs[entity_type]
        except KeyError:
            raise NotConfiguredError(entity_type) from None

    def is_configured(self, entity_type: str) -> bool:
        return entity_type in self._configs

    def entity_types(self) -> List[str]:
        return list(self._configs)

    def parents_of(self, entity_type: str) -> List[Tuple[str, CascadeEdge]]:
        """Return (parent type, edge) pairs that cascade into ``entity_type``."""
        return [
            (parent, edge)
            for parent, config in self._configs.items()
            for edge in config.cascade
            if edge.entity_type == entity_type
        ]

    def validate(self) -> None:
        """
        Check that every cascade edge targets a registered type.

        Raises:
            NotConfiguredError: For the first dangling edge found
        """
        for config in self._configs.values():
            for edge in config.cascade:
                if edge.entity_type not in self._configs:
                    raise NotConfiguredError(edge.entity_type)

    def purge_order(self) -> List[str]:
        """
        Order registered types so that dependents come before their parents.

        Physical purges in this order never remove a parent row while one of
        its registered dependents is still waiting to be purged.
        """
        order: List[str] = []
        visited = set()

        def visit(entity_type: str) -> None:
            if entity_type in visited:
                return
            visited.add(entity_type)
            config = self._configs.get(entity_type)
            if config is not None:
                for edge in config.cascade:
                    visit(edge.entity_type)
                order.append(entity_type)

        for entity_type in self._configs:
            visit(entity_type)
        return order

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._configs

    def __iter__(self) -> Iterator[CascadeConfig]:
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)


def _find_cycle(configs: Dict[str, CascadeConfig], start: str) -> Optional[List[str]]:
    """Depth-first search for a path from ``start`` back to itself."""
    stack: List[Tuple[str, List[str]]] = [(start, [start])]
    seen = set()
    while stack:
        entity_type, path = stack.pop()
        config = configs.get(entity_type)
        if config is None:
            continue
        for edge in config.cascade:
            if edge.entity_type == start:
                return path + [start]
            if edge.entity_type not in seen:
                seen.add(edge.entity_type)
                stack.append((edge.entity_type, path + [edge.entity_type]))
    return None


def _edges(*pairs: Tuple[str, str]) -> List[CascadeEdge]:
    return [CascadeEdge(entity_type=t, foreign_key=fk) for t, fk in pairs]


DEFAULT_CASCADES: Dict[str, List[CascadeEdge]] = {
    "user": _edges(
        ("task", "creator_id"),
        ("comment", "user_id"),
        ("notification", "user_id"),
    ),
    "workspace": _edges(
        ("project", "workspace_id"),
        ("workspace_member", "workspace_id"),
        ("calendar_event", "workspace_id"),
    ),
    "project": _edges(
        ("task", "project_id"),
        ("section", "project_id"),
        ("project_member", "project_id"),
    ),
    "task": _edges(
        ("comment", "task_id"),
        ("sub_task", "task_id"),
        ("task_tag", "task_id"),
        ("task_attachment", "task_id"),
    ),
}

LEAF_TYPES = (
    "comment",
    "sub_task",
    "task_tag",
    "task_attachment",
    "workspace_member",
    "project_member",
    "calendar_event",
    "notification",
    "section",
)


def default_registry() -> CascadeRegistry:
    """Build the frozen registry for the workspace/project/task entity graph."""
    registry = CascadeRegistry()
    for entity_type in LEAF_TYPES:
        registry.register(CascadeConfig(entity_type=entity_type))
    for entity_type, edges in DEFAULT_CASCADES.items():
        registry.register(CascadeConfig(entity_type=entity_type, cascade=edges))
    registry.validate()
    return registry.freeze()
