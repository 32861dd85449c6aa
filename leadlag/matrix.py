# leadlag/matrix.py
from typing import Dict, Iterator, List, Optional, Tuple

from .models import CausalityRelation


class CausalityMatrix:
    """
    Dense table of CausalityRelation for every ordered pair of distinct assets.
    Assets get a stable integer ordinal at construction; the diagonal is None.
    """
    def __init__(self, assets: List[str]):
        self.assets = list(assets)
        self.ordinals: Dict[str, int] = {a: i for i, a in enumerate(self.assets)}
        n = len(self.assets)
        self._cells: List[List[Optional[CausalityRelation]]] = [
            [CausalityRelation() if i != j else None for j in range(n)]
            for i in range(n)
        ]

    def relation(self, leader: str, follower: str) -> CausalityRelation:
        if leader == follower:
            raise KeyError(f"no self-relation for {leader}")
        return self._cells[self.ordinals[leader]][self.ordinals[follower]]

    def pairs(self) -> Iterator[Tuple[str, str, CausalityRelation]]:
        """Yields (leader, follower, relation) in ordinal order."""
        for i, leader in enumerate(self.assets):
            row = self._cells[i]
            for j, follower in enumerate(self.assets):
                if i != j:
                    yield leader, follower, row[j]

    def __len__(self) -> int:
        n = len(self.assets)
        return n * (n - 1)

    def to_dict(self) -> Dict[str, Dict[str, dict]]:
        out: Dict[str, Dict[str, dict]] = {a: {} for a in self.assets}
        for leader, follower, rel in self.pairs():
            out[leader][follower] = rel.to_dict()
        return out
