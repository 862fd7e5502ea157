# name_index.py
import logging
from typing import Dict, Iterable, Iterator, List, Tuple

from .utils.name_utils import normalize
from .utils.registry_types import Entity

_LOGGER = logging.getLogger(__name__)


class NameIndex:
    """Normalized name token -> candidate entity ids.

    Every entity is indexed under its normalized display name and its
    normalized identifier (the domain dot acts as a word boundary). Token and
    candidate order follow registry iteration order.
    """

    def __init__(self) -> None:
        self._index: Dict[str, Tuple[str, ...]] = {}

    @staticmethod
    def normalize(text: str) -> str:
        return normalize(text)

    def build(self, entities: Iterable[Entity]) -> "NameIndex":
        """Replace the whole index with one built from `entities`.

        The new mapping is assembled off to the side and installed with a
        single assignment; readers never see a partially built index.
        """
        staging: Dict[str, List[str]] = {}
        count = 0
        for entity in entities:
            count += 1
            for token in (normalize(entity.display_name), normalize(entity.entity_id)):
                if not token:
                    continue
                bucket = staging.setdefault(token, [])
                if entity.entity_id not in bucket:
                    bucket.append(entity.entity_id)

        self._index = {token: tuple(ids) for token, ids in staging.items()}
        _LOGGER.debug(
            "[NameIndex] Built: %d entities, %d name tokens", count, len(self._index)
        )
        return self

    @classmethod
    def from_entities(cls, entities: Iterable[Entity]) -> "NameIndex":
        return cls().build(entities)

    def lookup(self, token: str) -> Tuple[str, ...]:
        """Exact token lookup; `token` is expected to be normalized already."""
        return self._index.get(token, ())

    def items(self) -> Iterator[Tuple[str, Tuple[str, ...]]]:
        return iter(self._index.items())

    def __contains__(self, token: str) -> bool:
        return token in self._index

    def __len__(self) -> int:
        return len(self._index)
