import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: str
    size: int = 4
    align: int = 1
    array: bool = False
    native: bool = False
    original_type: str = ""

    @classmethod
    def from_dict(cls, field: dict) -> "FieldDescriptor":
        return cls(
            name=field.get("name", "<unnamed>"),
            type=str(field.get("type", "data")).lower(),
            size=int(field.get("size", 4)),
            align=max(int(field.get("align", 1)), 1),
            array=bool(field.get("array", False)),
            native=bool(field.get("native", False)),
            original_type=field.get("original_type", ""),
        )


@dataclass(frozen=True)
class ClassDefinition:
    type_id: int
    crc: int
    name: str
    fields: Tuple[FieldDescriptor, ...] = ()
    parent: str = ""

    def field(self, name: str) -> Optional[FieldDescriptor]:
        for field in self.fields:
            if field.name == name:
                return field
        return None


def _parse_crc(value) -> int:
    if isinstance(value, int):
        return value
    if not value:
        return 0
    return int(str(value), 16)


def _dedupe_field_names(fields):
    """Rename repeated field names to ``name_2``, ``name_3``... so the field map stays one-to-one."""
    seen = {}
    for field in fields:
        name = field.get("name")
        if not name:
            continue
        if name in seen:
            seen[name] += 1
            new_name = f"{name}_{seen[name]}"
            logger.debug("Renamed duplicate field '%s' to '%s'", name, new_name)
            field["name"] = new_name
        else:
            seen[name] = 1


class ClassRegistry:
    """
    Read-only lookup from RSZ type ids (and names) to class layouts.

    Built from an rsz<game>.json descriptor dump: a mapping of hex type id to
    {"name", "crc", "fields": [...]}. Nothing mutates the registry after
    construction, so one instance can be shared by every container and thread.
    """

    def __init__(self, json_path: str = None, registry: dict = None):
        self.json_path = json_path
        if registry is None:
            if json_path is None:
                raise ValueError("ClassRegistry needs a json_path or a registry dict")
            with open(json_path, "r", encoding="utf-8") as f:
                registry = json.load(f)

        self._by_id: Dict[int, ClassDefinition] = {}
        self._by_name: Dict[str, ClassDefinition] = {}
        self.metadata = registry.get("metadata", {}) if isinstance(registry.get("metadata"), dict) else {}

        for type_key, info in registry.items():
            if not isinstance(info, dict) or "name" not in info:
                continue
            try:
                type_id = int(type_key, 16)
            except ValueError:
                continue
            raw_fields = [dict(field) for field in info.get("fields", [])]
            _dedupe_field_names(raw_fields)
            definition = ClassDefinition(
                type_id=type_id,
                crc=_parse_crc(info.get("crc", 0)),
                name=info["name"],
                fields=tuple(FieldDescriptor.from_dict(field) for field in raw_fields),
                parent=info.get("parent") or "",
            )
            self._by_id[type_id] = definition
            self._by_name.setdefault(definition.name, definition)

        logger.debug("Loaded %d class definitions%s", len(self._by_id),
                     f" from {json_path}" if json_path else "")

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, type_id: int) -> bool:
        return type_id in self._by_id

    def get_class(self, type_id: int) -> Optional[ClassDefinition]:
        """Class definition for ``type_id``, or None when the id is unknown."""
        return self._by_id.get(type_id)

    def find_class(self, type_name: str) -> Optional[ClassDefinition]:
        return self._by_name.get(type_name)

    def get_type_parents(self, type_name: str) -> list:
        """
        Ordered parent type names for ``type_name``, nearest first.
        Stops at an unknown parent or a cycle.
        """
        parents = []
        seen = set()
        current = self._by_name.get(type_name)
        while current and current.parent and current.parent not in seen:
            parents.append(current.parent)
            seen.add(current.parent)
            current = self._by_name.get(current.parent)
        return parents
