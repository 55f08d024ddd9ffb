"""
Node state store
Persists event activation history, last-seen times and relation edges as one JSON file
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from filelock import FileLock

from focusrank.core.interfaces.node_state_store_interface import NodeStateStoreInterface
from focusrank.modules.priority.models import (
    MAX_ACTIVATION_HISTORY,
    ActivationRecord,
    EventNode,
    EventRelation,
)

logger = logging.getLogger(__name__)

STATE_FILENAME = "node_state.json"


class NodeStateStore(NodeStateStoreInterface):
    """
    In-memory state mirrored to data_dir/node_state.json when a data_dir is given.

    Writes go through a FileLock and a temp-file replace so a crash never
    leaves a half-written file; they run in a worker thread.
    """

    def __init__(self, data_dir: Optional[str] = None):
        self.state_path: Optional[Path] = Path(data_dir) / STATE_FILENAME if data_dir else None
        self._nodes: Dict[str, Dict[str, Any]] = {}
        self._relations: Dict[tuple, EventRelation] = {}
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if self.state_path is None or not self.state_path.exists():
            return
        try:
            with open(self.state_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[NodeStateStore] Could not read {self.state_path}, starting empty: {e}")
            return

        self._nodes = data.get("nodes", {})
        for raw in data.get("relations", []):
            try:
                relation = EventRelation.from_dict(raw)
            except (KeyError, ValueError) as e:
                logger.warning(f"[NodeStateStore] Skipping malformed relation {raw}: {e}")
                continue
            self._relations[relation.key] = relation
        logger.info(f"[NodeStateStore] Loaded {len(self._nodes)} nodes, {len(self._relations)} relations")

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "nodes": json.loads(json.dumps(self._nodes)),
            "relations": [r.to_dict() for r in self._relations.values()],
        }

    def _save_sync(self, data: Dict[str, Any]) -> None:
        """Synchronous save - to be called in thread with file locking"""
        lock_path = str(self.state_path) + ".lock"
        try:
            with FileLock(lock_path, timeout=10):
                self.state_path.parent.mkdir(exist_ok=True, parents=True)
                temp_path = self.state_path.with_suffix('.tmp')
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                temp_path.replace(self.state_path)
        except PermissionError as e:
            logger.error(f"Permission denied saving node state: {e}")
        except Exception as e:
            logger.error(f"Failed to save node state: {e}", exc_info=True)

    async def _save(self) -> None:
        if self.state_path is None:
            return
        await asyncio.to_thread(self._save_sync, self._snapshot())

    async def load_activation_state(self, node_id: str) -> Tuple[List[ActivationRecord], Optional[datetime]]:
        entry = self._nodes.get(node_id)
        if not entry:
            return [], None
        history = [ActivationRecord.from_dict(r) for r in entry.get("activation_history", [])]
        last_seen = entry.get("last_seen_time")
        return history[-MAX_ACTIVATION_HISTORY:], datetime.fromisoformat(last_seen) if last_seen else None

    async def save_activation_state(self, node: EventNode) -> None:
        async with self._lock:
            self._nodes[node.id] = {
                "activation_history": [r.to_dict() for r in node.activation_history],
                "last_seen_time": node.last_seen_time.isoformat() if node.last_seen_time else None,
            }
            await self._save()

    async def get_relations(self, node_id: str) -> List[EventRelation]:
        return [r for r in self._relations.values() if node_id in (r.source_id, r.target_id)]

    async def add_relation(self, relation: EventRelation) -> bool:
        async with self._lock:
            if relation.key in self._relations:
                return False
            self._relations[relation.key] = relation
            await self._save()
            return True

    def stats(self) -> Dict[str, int]:
        return {"nodes": len(self._nodes), "relations": len(self._relations)}
