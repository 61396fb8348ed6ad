"""Read-only views of the tag and topic catalogs."""
from dataclasses import dataclass
from typing import Any, FrozenSet, List


@dataclass(frozen=True)
class TagSpec:
    """Read-only view of a catalog tag."""
    id: int
    name: str
    variations: str = ""  # comma separated

    @classmethod
    def from_tag(cls, tag: Any) -> "TagSpec":
        return cls(id=tag.id, name=tag.name or "", variations=tag.variations or "")

    def spellings(self) -> List[str]:
        """Canonical name followed by each trimmed, non-blank variation."""
        terms = [self.name.strip()]
        if self.variations:
            terms.extend(v.strip() for v in self.variations.split(","))
        return [t for t in terms if t]


@dataclass(frozen=True)
class TopicSpec:
    """Read-only view of a topic and the names of its tags."""
    id: int
    name: str
    tag_names: FrozenSet[str]
    active: bool = True

    @classmethod
    def from_topic(cls, topic: Any) -> "TopicSpec":
        return cls(
            id=topic.id,
            name=topic.name,
            tag_names=frozenset(tag.name for tag in topic.tags),
            active=bool(topic.active),
        )
