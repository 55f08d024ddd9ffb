# focusrank/core/interfaces/node_state_store_interface.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from focusrank.modules.priority.models import ActivationRecord, EventNode, EventRelation


class NodeStateStoreInterface(ABC):
    """
    Persistence for the mutable part of an event node: activation history,
    last-seen time, and the relation edges used for graph diffusion.
    """

    @abstractmethod
    async def load_activation_state(self, node_id: str) -> Tuple[List[ActivationRecord], Optional[datetime]]:
        """
        Returns (activation history oldest first, last seen time) for node_id.
        Unknown nodes return ([], None).
        """
        pass

    @abstractmethod
    async def save_activation_state(self, node: EventNode) -> None:
        pass

    @abstractmethod
    async def get_relations(self, node_id: str) -> List[EventRelation]:
        """
        Returns every relation where node_id is the source or the target.
        """
        pass

    @abstractmethod
    async def add_relation(self, relation: EventRelation) -> bool:
        """
        Stores relation unless an identical (source, target, type) edge exists.
        Returns True when a new edge was written.
        """
        pass
