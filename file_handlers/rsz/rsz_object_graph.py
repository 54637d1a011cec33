"""
Game object tree over an RSZ block.

Containers store the tree flat: GameObjectInfo records (object id, parent
id, component count) whose ids are object-table indices. The identity
instance of a game object sits at ``object_table[object_id]`` and its
components in the ``component_count`` slots right after it.

build_object_tree() turns the flat records into GameObjectNode trees,
rebuild_flat_tables() flattens an edited forest back, and adapt_tree()
deep-copies a tree for use in another container.
"""

import logging
import weakref
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from file_handlers.rsz.rsz_data_types import StringData
from file_handlers.rsz.rsz_errors import RszReferenceError

logger = logging.getLogger(__name__)


class GameObjectNode:
    """A game object (or scene folder) with its components and children.

    The node owns its instances and children. The parent link is a weak
    reference used only for lookups.
    """

    def __init__(self, info, instance=None, components=None):
        self.info = info
        self.instance = instance
        self.components = list(components or [])
        self.children: List["GameObjectNode"] = []
        self._parent_ref = None

    @property
    def parent(self) -> Optional["GameObjectNode"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @parent.setter
    def parent(self, value: Optional["GameObjectNode"]):
        self._parent_ref = weakref.ref(value) if value is not None else None

    @property
    def object_id(self) -> Optional[int]:
        return self.info.object_id if self.info is not None else None

    @property
    def is_folder(self) -> bool:
        return getattr(self.info, "is_folder", False)

    @property
    def name(self) -> Optional[str]:
        """The identity instance's first string field, which holds the object name."""
        if self.instance is None or self.instance.class_def is None:
            return None
        for value in self.instance.fields.values():
            if isinstance(value, StringData):
                return value.value
        return None

    def add_child(self, child: "GameObjectNode", index: int = None):
        if child.parent is not None and child.parent is not self:
            child.parent.remove_child(child)
        if index is None:
            self.children.append(child)
        else:
            self.children.insert(index, child)
        child.parent = self

    def remove_child(self, child: "GameObjectNode"):
        self.children.remove(child)
        child.parent = None

    def walk(self):
        """Pre-order iteration over this node and its descendants."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __repr__(self):
        label = self.name or (self.instance.name if self.instance is not None else "?")
        return f"<GameObjectNode {label} id={self.object_id} components={len(self.components)}>"


@dataclass
class RebuildResult:
    object_table: List[int]
    instances: list
    infos: list
    pruned_count: int
    pruned: list = field(default_factory=list)


def _object_slot(instances, object_table, object_index, owner):
    if not 0 <= object_index < len(object_table):
        raise RszReferenceError(
            f"Game object {owner}: object index {object_index} is outside the object table ({len(object_table)})")
    ordinal = object_table[object_index]
    if not 0 < ordinal < len(instances):
        raise RszReferenceError(
            f"Game object {owner}: object table slot {object_index} holds invalid ordinal {ordinal}")
    return instances[ordinal]


def _directory_run(instances, object_table, object_index, count, owner):
    first = object_table[object_index] + 1
    if first + count > len(instances):
        raise RszReferenceError(
            f"Game object {owner}: components at ordinals {first}..{first + count - 1} "
            f"are outside the instance directory ({len(instances)})")
    return instances[first:first + count]


def build_object_tree(instances, object_table, infos,
                      nested_components_in_object_table: bool = True) -> List[GameObjectNode]:
    """
    Build the forest described by ``infos``. Raises RszReferenceError for a
    parent id with no matching object, a slot outside the object table, or a
    parent cycle. The flat tables are never modified.

    With ``nested_components_in_object_table`` off, components of non-root
    game objects are the instances directly after the identity instance in
    the directory rather than the object-table slots after it.
    """
    nodes = {}
    ordered = []
    for info in infos:
        if info.object_id in nodes:
            raise RszReferenceError(f"Duplicate game object id {info.object_id}")
        identity = _object_slot(instances, object_table, info.object_id, info.object_id)
        if nested_components_in_object_table or info.parent_id == -1:
            components = [
                _object_slot(instances, object_table, index, info.object_id)
                for index in range(info.object_id + 1, info.object_id + 1 + info.component_count)
            ]
        else:
            components = _directory_run(instances, object_table, info.object_id,
                                        info.component_count, info.object_id)
        node = GameObjectNode(info, identity, components)
        nodes[info.object_id] = node
        ordered.append(node)

    roots = []
    for node in ordered:
        parent_id = node.info.parent_id
        if parent_id == -1:
            roots.append(node)
            continue
        parent = nodes.get(parent_id)
        if parent is None:
            raise RszReferenceError(f"Game object {node.object_id} has dangling parent id {parent_id}")
        parent.children.append(node)
        node.parent = parent

    reachable = sum(1 for root in roots for _ in root.walk())
    if reachable != len(ordered):
        raise RszReferenceError(f"{len(ordered) - reachable} game objects are caught in a parent cycle")

    logger.debug("Built %d game objects under %d roots", len(ordered), len(roots))
    return roots


class _InstanceFlattener:
    """Assigns new ordinals, placing each instance after the instances it references."""

    def __init__(self, null_instance):
        self.ordered = [null_instance]
        self.ordinals = {id(null_instance): 0}

    def place(self, root) -> int:
        if root is None:
            return 0
        existing = self.ordinals.get(id(root))
        if existing is not None:
            return existing

        visiting = {id(root)}
        stack = [(root, _reference_targets(root))]
        while stack:
            instance, targets = stack[-1]
            for target in targets:
                key = id(target)
                if key not in self.ordinals and key not in visiting:
                    visiting.add(key)
                    stack.append((target, _reference_targets(target)))
                    break
            else:
                stack.pop()
                self.ordinals[id(instance)] = len(self.ordered)
                self.ordered.append(instance)
        return self.ordinals[id(root)]

    def place_run(self, head, members) -> int:
        """
        Place ``head`` and ``members`` at consecutive ordinals, after everything
        they reference. Raises RszReferenceError when that order is impossible.
        """
        run = [head] + list(members)
        keys = {id(instance) for instance in run}
        for instance in run:
            for target in _reference_targets(instance):
                if id(target) not in keys:
                    self.place(target)

        position = {}
        for index, instance in enumerate(run):
            if id(instance) in self.ordinals:
                raise RszReferenceError(
                    f"{instance!r} is referenced from outside its game object and cannot "
                    "follow it in the instance directory")
            for target in _reference_targets(instance):
                if target is not instance and id(target) in keys and id(target) not in position:
                    raise RszReferenceError(f"{instance!r} references a later instance of its own game object")
            position[id(instance)] = index
            self.ordinals[id(instance)] = len(self.ordered)
            self.ordered.append(instance)
        return self.ordinals[id(head)]


def _reference_targets(instance):
    return iter([ref.target for ref in instance.references() if ref.target is not None])


def rebuild_flat_tables(roots, previous_instances, null_instance=None,
                        nested_components_in_object_table: bool = True,
                        root_instances=()) -> RebuildResult:
    """
    Flatten ``roots`` into a new object table, instance directory and info
    list. Every reference must already carry its target instance.

    Nodes are visited pre-order and at most once. Each node gets the next
    object-table index as its object id, followed by its components. Instances
    of ``previous_instances`` that are no longer reachable are dropped and
    counted in ``pruned_count``. ``root_instances`` are extra object-table
    roots for containers without a game object tree.

    With ``nested_components_in_object_table`` off, components of non-root
    nodes stay out of the object table and take the ordinals right after
    their identity instance, matching build_object_tree() in the same mode.
    """
    if null_instance is None:
        null_instance = previous_instances[0]
    flattener = _InstanceFlattener(null_instance)
    object_table = []
    infos = []
    visited = set()

    def visit(node, parent, depth):
        if id(node) in visited:
            return
        visited.add(id(node))
        if node.instance is None:
            raise RszReferenceError(f"Game object node {node!r} has no identity instance")

        info = node.info
        info.object_id = len(object_table)
        info.parent_id = parent.info.object_id if parent is not None else -1
        if not node.is_folder:
            info.component_count = len(node.components)
        in_table = depth == 0 or nested_components_in_object_table
        if in_table:
            object_table.append(flattener.place(node.instance))
        else:
            object_table.append(flattener.place_run(node.instance, node.components))
        infos.append(info)

        if in_table:
            object_table.extend(flattener.place(component) for component in node.components)
        for child in node.children:
            visit(child, node, depth + 1)

    for root in roots:
        visit(root, None, 0)
    for instance in root_instances:
        object_table.append(flattener.place(instance))

    placed = flattener.ordinals
    pruned = [inst for inst in previous_instances[1:] if id(inst) not in placed]
    if pruned:
        logger.warning("Rebuild dropped %d unreachable instances", len(pruned))
    return RebuildResult(object_table, flattener.ordered, infos, len(pruned), pruned)


def _reachable_instances(instance):
    seen = set()
    stack = [instance]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend(ref.target for ref in current.references())


def adapt_tree(source: GameObjectNode, info_factory: Callable) -> GameObjectNode:
    """
    Deep copy ``source`` for use under another container. ``info_factory``
    turns a source info record into the destination's record type. Object and
    parent ids are cleared until the destination rebuilds; every instance is
    copied, and user-data entries are copied onto the cloned instances.
    """
    memo = {}

    def clone_instance(instance):
        if instance is None:
            return None
        copy = instance.clone(memo)
        for original in _reachable_instances(instance):
            cloned = memo.get(id(original))
            if original.user_data is not None and cloned is not None and cloned.user_data is None:
                cloned.user_data = original.user_data.copy()
        return copy

    def copy_node(node):
        info = info_factory(node.info)
        info.object_id = None
        info.parent_id = None
        info.component_count = len(node.components)
        new_node = GameObjectNode(info, clone_instance(node.instance),
                                  [clone_instance(component) for component in node.components])
        for child in node.children:
            new_node.add_child(copy_node(child))
        return new_node

    return copy_node(source)
