"""Four-category relationship registry for one agent."""

from __future__ import annotations

import logging
from typing import Any

from agentcomm.schemas import (
    Relationship,
    RelationshipCategory,
    RelationshipStatus,
    utc_now,
)
from agentcomm.store import AgentStore

logger = logging.getLogger(__name__)

# Subtype recorded when the caller does not name one
DEFAULT_SUBTYPES: dict[RelationshipCategory, str] = {
    RelationshipCategory.CONSUMER: "direct",
    RelationshipCategory.PRODUCER: "direct",
    RelationshipCategory.BIDIRECTIONAL: "bidirectional",
    RelationshipCategory.OPTIONAL: "optional",
}


class RelationshipManager:
    """Declares and queries an agent's relationships with its peers.

    Relationships are one-sided: adding one never touches the peer's registry.
    """

    def __init__(self, store: AgentStore):
        self.store = store

    @property
    def agent_id(self) -> str:
        return self.store.agent_id

    def add(
        self,
        peer_id: str,
        category: RelationshipCategory | str,
        subtype: str | None = None,
    ) -> bool:
        """Add a (peer, category) relationship unless it already exists.

        Returns:
            True if a new entry was written, False for a duplicate
        """
        category = RelationshipCategory(category)
        subtype = subtype or DEFAULT_SUBTYPES[category]

        registry = self.store.read_relationships()
        bucket = registry.bucket(category)
        if any(entry.agent_id == peer_id for entry in bucket):
            logger.debug(f"{category.value} relationship {self.agent_id} -> {peer_id} already exists")
            return False

        bucket.append(Relationship(agent_id=peer_id, type=subtype))
        self.store.write_relationships(registry)

        if category in (RelationshipCategory.CONSUMER, RelationshipCategory.PRODUCER):
            note = f"Added {category.value} relationship with {peer_id} ({subtype})"
        else:
            note = f"Added {category.value} relationship with {peer_id}"
        self.store.append_context(note)

        logger.info(f"Agent {self.agent_id} added {category.value} relationship with {peer_id}")
        return True

    def add_consumer(self, peer_id: str, subtype: str | None = None) -> bool:
        return self.add(peer_id, RelationshipCategory.CONSUMER, subtype)

    def add_producer(self, peer_id: str, subtype: str | None = None) -> bool:
        return self.add(peer_id, RelationshipCategory.PRODUCER, subtype)

    def add_bidirectional(self, peer_id: str, subtype: str | None = None) -> bool:
        return self.add(peer_id, RelationshipCategory.BIDIRECTIONAL, subtype)

    def add_optional(self, peer_id: str, subtype: str | None = None) -> bool:
        return self.add(peer_id, RelationshipCategory.OPTIONAL, subtype)

    def remove(self, peer_id: str) -> bool:
        """Remove the peer from every category.

        Returns:
            True if at least one entry was removed
        """
        registry = self.store.read_relationships()
        removed = False

        for category in RelationshipCategory:
            bucket = registry.bucket(category)
            kept = [entry for entry in bucket if entry.agent_id != peer_id]
            if len(kept) != len(bucket):
                bucket[:] = kept
                removed = True

        if removed:
            self.store.write_relationships(registry)
            self.store.append_context(f"Removed relationship with {peer_id}")
            logger.info(f"Agent {self.agent_id} removed relationship with {peer_id}")
        else:
            logger.debug(f"No relationship between {self.agent_id} and {peer_id} to remove")
        return removed

    def set_status(self, peer_id: str, status: RelationshipStatus | str) -> bool:
        """Set the status of every entry for the peer.

        Returns:
            True if any entry was updated
        """
        status = RelationshipStatus(status)
        registry = self.store.read_relationships()
        updated = False

        for category in RelationshipCategory:
            for entry in registry.bucket(category):
                if entry.agent_id == peer_id:
                    entry.status = status
                    entry.last_updated = utc_now()
                    updated = True

        if updated:
            self.store.write_relationships(registry)
            self.store.append_context(
                f"Updated relationship status with {peer_id} to {status.value}"
            )
        return updated

    def relationship_type(self, peer_id: str) -> dict[str, str] | None:
        """First matching entry as {category, type}, searching in category order."""
        registry = self.store.read_relationships()
        for category in RelationshipCategory:
            for entry in registry.bucket(category):
                if entry.agent_id == peer_id:
                    return {"category": category.value, "type": entry.type}
        return None

    def related_agents(self) -> list[str]:
        """Every peer id across all categories, each listed once."""
        registry = self.store.read_relationships()
        seen: dict[str, None] = {}
        for category in RelationshipCategory:
            for entry in registry.bucket(category):
                seen.setdefault(entry.agent_id, None)
        return list(seen)

    def producers_chain(self) -> list[str]:
        """Ids of the agents this agent directly depends on."""
        registry = self.store.read_relationships()
        return [entry.agent_id for entry in registry.producers]

    def stats(self) -> dict[str, Any]:
        registry = self.store.read_relationships()
        entries = [e for category in RelationshipCategory for e in registry.bucket(category)]
        active = sum(1 for e in entries if e.status == RelationshipStatus.ACTIVE)
        return {
            "totalRelationships": len(entries),
            "consumers": len(registry.consumers),
            "producers": len(registry.producers),
            "bidirectional": len(registry.bidirectional),
            "optional": len(registry.optional),
            "activeRelationships": active,
            "inactiveRelationships": len(entries) - active,
        }
