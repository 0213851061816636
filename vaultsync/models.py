"""Document model for the synchronized state.

Only the fields the merge needs are modelled explicitly. Everything else a
record carries (descriptions, sentiment, exposure, settings, ...) is kept in
an ``extra`` mapping and written back untouched, so snapshots survive a
decode/encode cycle without losing data owned by the application. Optional
keys (``name``, ``description``, ``text``, the ``entity`` marker) are only
written when the record carried them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _split(data: Dict[str, Any], known: tuple) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in known}


def _put_optional(result: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        result[key] = value


@dataclass
class DataItem:
    """A fact, trait, topic or person learned about the human."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    last_updated: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "name", "description", "last_updated")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id}
        _put_optional(result, "name", self.name)
        _put_optional(result, "description", self.description)
        result["last_updated"] = self.last_updated
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataItem":
        return cls(
            id=data["id"],
            name=data.get("name"),
            description=data.get("description"),
            last_updated=data.get("last_updated", ""),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class Quote:
    """Append-only quote captured from a conversation."""

    id: str
    text: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "text")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id}
        _put_optional(result, "text", self.text)
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quote":
        return cls(
            id=data["id"],
            text=data.get("text"),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class Message:
    """One immutable message in a persona conversation."""

    id: str
    timestamp: str
    role: str = "human"
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "timestamp", "role")

    def to_dict(self) -> Dict[str, Any]:
        result = {"id": self.id, "role": self.role, "timestamp": self.timestamp}
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            timestamp=data.get("timestamp", ""),
            role=data.get("role", "human"),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class PersonaEntity:
    """Persona metadata; replaced as a whole during merge."""

    id: str = ""
    display_name: str = ""
    last_updated: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "display_name", "last_updated")

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "display_name": self.display_name,
            "last_updated": self.last_updated,
        }
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonaEntity":
        return cls(
            id=data.get("id", ""),
            display_name=data.get("display_name", ""),
            last_updated=data.get("last_updated", ""),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class PersonaData:
    """A persona together with its conversation."""

    entity: PersonaEntity
    messages: List[Message] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonaData":
        return cls(
            entity=PersonaEntity.from_dict(data.get("entity", {})),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
        )


DATA_ITEM_LISTS = ("facts", "traits", "topics", "people")


@dataclass
class HumanEntity:
    """Everything known about the human using the application."""

    facts: List[DataItem] = field(default_factory=list)
    traits: List[DataItem] = field(default_factory=list)
    topics: List[DataItem] = field(default_factory=list)
    people: List[DataItem] = field(default_factory=list)
    quotes: List[Quote] = field(default_factory=list)
    last_updated: str = ""
    # Documents created here carry the marker; decoded ones keep whatever they had
    entity: Optional[str] = "human"
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = DATA_ITEM_LISTS + ("quotes", "last_updated", "entity")

    def items(self, kind: str) -> List[DataItem]:
        if kind not in DATA_ITEM_LISTS:
            raise KeyError(f"Unknown data item list '{kind}'")
        return getattr(self, kind)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        _put_optional(result, "entity", self.entity)
        result.update(self.extra)
        for kind in DATA_ITEM_LISTS:
            result[kind] = [item.to_dict() for item in self.items(kind)]
        result["quotes"] = [quote.to_dict() for quote in self.quotes]
        result["last_updated"] = self.last_updated
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HumanEntity":
        return cls(
            facts=[DataItem.from_dict(i) for i in data.get("facts", [])],
            traits=[DataItem.from_dict(i) for i in data.get("traits", [])],
            topics=[DataItem.from_dict(i) for i in data.get("topics", [])],
            people=[DataItem.from_dict(i) for i in data.get("people", [])],
            quotes=[Quote.from_dict(q) for q in data.get("quotes") or []],
            last_updated=data.get("last_updated", ""),
            entity=data.get("entity"),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class StorageState:
    """The full document handed to the sync core by the owning application."""

    timestamp: str = field(default_factory=utc_now_iso)
    human: HumanEntity = field(default_factory=HumanEntity)
    personas: Dict[str, PersonaData] = field(default_factory=dict)
    queue: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("timestamp", "human", "personas", "queue")

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "timestamp": self.timestamp,
            "human": self.human.to_dict(),
            "personas": {name: data.to_dict() for name, data in self.personas.items()},
            "queue": list(self.queue),
        }
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageState":
        return cls(
            timestamp=data.get("timestamp", ""),
            human=HumanEntity.from_dict(data.get("human", {})),
            personas={
                name: PersonaData.from_dict(persona)
                for name, persona in (data.get("personas") or {}).items()
            },
            queue=list(data.get("queue") or []),
            extra=_split(data, cls._KNOWN),
        )


@dataclass
class Checkpoint:
    """Listing entry for one on-device snapshot."""

    index: int
    timestamp: str
    name: Optional[str] = None  # Only manual slots carry a name

    @property
    def is_manual(self) -> bool:
        return self.name is not None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"index": self.index, "timestamp": self.timestamp}
        if self.name is not None:
            result["name"] = self.name
        return result


__all__ = [
    "Checkpoint",
    "DATA_ITEM_LISTS",
    "DataItem",
    "HumanEntity",
    "Message",
    "PersonaData",
    "PersonaEntity",
    "Quote",
    "StorageState",
    "utc_now_iso",
]
