"""Agent records: per-worktree metadata plus the central agent list.

The worktree metadata file is authoritative.  The central list in storage is
a convenience index that :meth:`AgentPersistence.restore_agents` rebuilds
from a fresh worktree scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentdeck.protocol.models import Agent, PersistedAgent
from agentdeck.storage import AGENTS_KEY, Storage
from agentdeck.workspace.worktree import WorktreeManager

log = logging.getLogger(__name__)


@dataclass(slots=True)
class RestoreResult:
    agents: list[Agent] = field(default_factory=list)
    missing: list[PersistedAgent] = field(default_factory=list)


class AgentPersistence:
    def __init__(self, worktrees: WorktreeManager, storage: Storage) -> None:
        self._worktrees = worktrees
        self._storage = storage

    def load_central(self) -> list[PersistedAgent]:
        """Valid records from central storage; malformed entries are dropped."""
        raw = self._storage.get(AGENTS_KEY, [])
        if not isinstance(raw, list):
            return []
        records: list[PersistedAgent] = []
        for item in raw:
            try:
                records.append(PersistedAgent.from_dict(item))
            except ValueError as exc:
                log.warning("Dropping invalid central agent record: %s", exc)
        return records

    def save(self, agent: Agent | PersistedAgent) -> None:
        """Write worktree metadata and upsert the central record."""
        record = agent.to_persisted() if isinstance(agent, Agent) else agent
        self._worktrees.save_metadata(record)
        others = [r for r in self.load_central() if r.id != record.id]
        self._write_central([*others, record])

    def remove(self, agent_id: int) -> None:
        records = self.load_central()
        kept = [r for r in records if r.id != agent_id]
        if len(kept) != len(records):
            self._write_central(kept)

    def restore_agents(self, repo: str | Path) -> RestoreResult:
        """Rebuild runtime agents from the worktree scan.

        Central records whose worktree has vanished are reported in
        ``missing`` and dropped; the central list is rewritten from the scan.
        """
        scanned = self._worktrees.scan_for_agents(repo)
        present = {Path(r.worktree_path) for r in scanned}
        missing = [r for r in self.load_central() if Path(r.worktree_path) not in present]
        for record in missing:
            log.info("Agent %s (id=%d) has no worktree at %s", record.name, record.id, record.worktree_path)

        self._write_central(scanned)
        return RestoreResult(agents=[Agent.from_persisted(r) for r in scanned], missing=missing)

    def _write_central(self, records: list[PersistedAgent]) -> None:
        ordered = sorted(records, key=lambda r: r.id)
        self._storage.set(AGENTS_KEY, [r.to_dict() for r in ordered])
