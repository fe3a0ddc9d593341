"""
Agent definition registry and context-ranked lookup.
====================================================
The registry is an immutable snapshot built once from the raw records the
loader yields. ``AgentCatalog`` owns the current snapshot and swaps in a new
one on reload, so every request reads one consistent registry.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 10

# Relevance weights: a tag hit always outranks a description-only hit.
TAG_WEIGHT = 2
DESCRIPTION_WEIGHT = 1


class AgentDefinition(BaseModel):
    """A named, tag-annotated automation agent."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    description: str = ""
    context_tags: frozenset[str] = Field(default_factory=frozenset, alias="contextTags")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("context_tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple, set, frozenset)):
            return value
        tags = set()
        for tag in value:
            if not isinstance(tag, str):
                raise ValueError("tags must be strings")
            tag = tag.strip().lower()
            if tag:
                tags.add(tag)
        return frozenset(tags)

    @field_serializer("context_tags")
    def _sorted_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def relevance(agent: AgentDefinition, context: str) -> int:
    """
    Scores an agent against a query context.

    Each context tag that equals, or is contained in, the context adds
    ``TAG_WEIGHT``; the context appearing in the description adds
    ``DESCRIPTION_WEIGHT`` once. Matching is case-insensitive.
    """
    needle = context.strip().lower()
    if not needle:
        return 0
    score = sum(TAG_WEIGHT for tag in agent.context_tags if tag in needle)
    if needle in agent.description.lower():
        score += DESCRIPTION_WEIGHT
    return score


class AgentRegistry:
    """Read-only snapshot of agent definitions, keyed by unique name."""

    def __init__(self, agents: Iterable[AgentDefinition] = ()) -> None:
        by_name: dict[str, AgentDefinition] = {}
        for agent in agents:
            if agent.name in by_name:
                raise ValueError(f"duplicate agent name: {agent.name}")
            by_name[agent.name] = agent
        self._by_name = by_name
        self._agents = tuple(sorted(by_name.values(), key=lambda a: a.name))

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> "AgentRegistry":
        """
        Builds a snapshot from raw loader records.

        Malformed records are dropped. When two records share a name the first
        one wins and the later one is dropped. Both cases are logged.
        """
        accepted: dict[str, AgentDefinition] = {}
        for index, record in enumerate(records):
            source = record.get("source", f"record #{index}") if isinstance(record, dict) else f"record #{index}"
            try:
                agent = AgentDefinition.model_validate(record)
            except ValidationError as exc:
                logger.warning("Skipping malformed agent definition %s: %s", source, exc.errors()[0]["msg"])
                continue
            if agent.name in accepted:
                logger.warning("Skipping duplicate agent '%s' from %s", agent.name, source)
                continue
            accepted[agent.name] = agent
        return cls(accepted.values())

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def agents(self) -> tuple[AgentDefinition, ...]:
        return self._agents

    @property
    def names(self) -> list[str]:
        return [agent.name for agent in self._agents]

    def get(self, name: str) -> Optional[AgentDefinition]:
        return self._by_name.get(name)

    def query(self, context: str, limit: int = DEFAULT_QUERY_LIMIT) -> tuple[AgentDefinition, ...]:
        """Returns up to ``limit`` relevant agents, best first, ties by name."""
        if limit <= 0:
            return ()
        scored = [(relevance(agent, context), agent) for agent in self._agents]
        ranked = sorted(
            ((score, agent) for score, agent in scored if score > 0),
            key=lambda item: (-item[0], item[1].name),
        )
        return tuple(agent for _, agent in ranked[:limit])


class AgentCatalog:
    """
    Holds the current ``AgentRegistry`` snapshot.

    Readers take ``snapshot`` once per request. ``reload`` builds a complete
    registry first and installs it with one reference assignment, so a reader
    never observes a partially built registry. A failed reload leaves the
    previous snapshot in place and re-raises.
    """

    def __init__(
        self,
        load_records: Callable[[], list[dict[str, Any]]],
        registry: AgentRegistry | None = None,
    ) -> None:
        self._load_records = load_records
        self._lock = threading.Lock()
        self._snapshot = registry if registry is not None else AgentRegistry()

    @property
    def snapshot(self) -> AgentRegistry:
        return self._snapshot

    def reload(self) -> AgentRegistry:
        with self._lock:
            registry = AgentRegistry.from_records(self._load_records())
            self._snapshot = registry
        logger.info("Agent registry loaded: %d agent(s)", len(registry))
        return registry
