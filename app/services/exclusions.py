from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from app.services.errors import DuplicateExclusion, LockedError, NotFound, SelfExclusion


@dataclass(frozen=True)
class ExclusionPair:
    id: int
    raffle_id: Optional[int]
    member_a: int
    member_b: int

    @property
    def key(self) -> FrozenSet[int]:
        return frozenset((self.member_a, self.member_b))


class ExclusionSet:
    """Forbidden unordered member pairs of one raffle.

    Lookups are symmetric: ``contains(a, b) == contains(b, a)``. Once the raffle
    is drawn the set is locked and every mutation raises ``LockedError``.
    """

    def __init__(
        self,
        pairs: Iterable[ExclusionPair] = (),
        locked: bool = False,
        raffle_id: Optional[int] = None,
    ) -> None:
        self.raffle_id = raffle_id
        self.locked = False
        self._by_key: Dict[FrozenSet[int], ExclusionPair] = {}
        self._by_id: Dict[int, ExclusionPair] = {}
        for pair in pairs:
            self._insert(pair)
        self._next_id = itertools.count(max(self._by_id, default=0) + 1)
        self.locked = locked

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[int, int]], raffle_id: Optional[int] = None) -> "ExclusionSet":
        exclusions = cls(raffle_id=raffle_id)
        for member_a, member_b in pairs:
            exclusions.add(member_a, member_b)
        return exclusions

    @classmethod
    def from_rows(cls, rows, locked: bool = False, raffle_id: Optional[int] = None) -> "ExclusionSet":
        pairs = [
            ExclusionPair(
                id=row.id,
                raffle_id=row.raffle_id,
                member_a=row.member_a_id,
                member_b=row.member_b_id,
            )
            for row in rows
        ]
        return cls(pairs, locked=locked, raffle_id=raffle_id)

    def _ensure_unlocked(self) -> None:
        if self.locked:
            raise LockedError("Exclusions cannot be changed after the draw.")

    def _insert(self, pair: ExclusionPair) -> ExclusionPair:
        if pair.member_a == pair.member_b:
            raise SelfExclusion("A participant cannot be excluded from themselves.")
        if pair.key in self._by_key:
            raise DuplicateExclusion("This exclusion already exists.")
        self._by_key[pair.key] = pair
        self._by_id[pair.id] = pair
        return pair

    def check_can_add(self, member_a: int, member_b: int) -> None:
        self._ensure_unlocked()
        if member_a == member_b:
            raise SelfExclusion("A participant cannot be excluded from themselves.")
        if self.contains(member_a, member_b):
            raise DuplicateExclusion("This exclusion already exists.")

    def add(self, member_a: int, member_b: int, pair_id: Optional[int] = None) -> ExclusionPair:
        self.check_can_add(member_a, member_b)
        if pair_id is None:
            pair_id = next(self._next_id)
        return self._insert(
            ExclusionPair(id=pair_id, raffle_id=self.raffle_id, member_a=member_a, member_b=member_b)
        )

    def remove(self, pair_id: int) -> ExclusionPair:
        self._ensure_unlocked()
        pair = self._by_id.pop(pair_id, None)
        if pair is None:
            raise NotFound("Exclusion not found.")
        del self._by_key[pair.key]
        return pair

    def contains(self, member_a: int, member_b: int) -> bool:
        return frozenset((member_a, member_b)) in self._by_key

    def all(self) -> List[ExclusionPair]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[ExclusionPair]:
        return iter(self.all())
