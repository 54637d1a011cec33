import gc
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from file_handlers.rsz.pfb_file import PfbGameObjectInfo
from file_handlers.rsz.rsz_block import read_rsz_block
from file_handlers.rsz.rsz_errors import RszReferenceError
from file_handlers.rsz.rsz_object_graph import GameObjectNode, adapt_tree, build_object_tree, rebuild_flat_tables
from rsz_fixtures import (
    GAMEOBJECT,
    TRANSFORM,
    NULL,
    build_rsz_block,
    game_object,
    inst,
    make_registry,
    prefab_instances,
    transform,
)


def infos(*records):
    return [PfbGameObjectInfo(*record) for record in records]


def shape(node):
    """Comparable structure of a tree: identity names, component types and children."""
    return (node.name, [c.name for c in node.components], [shape(child) for child in node.children])


class TestBuildObjectTree(unittest.TestCase):

    def setUp(self):
        self.registry = make_registry()
        data = build_rsz_block(
            [1, 2, 3],
            [NULL, inst(GAMEOBJECT, game_object("Root")), inst(TRANSFORM, transform()),
             inst(GAMEOBJECT, game_object("Child"))],
        )
        self.block = read_rsz_block(data, self.registry, 71)

    def test_two_node_prefab(self):
        roots = build_object_tree(self.block.instances, self.block.object_table, infos((0, -1, 1), (2, 0, 0)))
        self.assertEqual(len(roots), 1)
        root = roots[0]
        self.assertIs(root.instance, self.block.instances[1])
        self.assertEqual(len(root.components), 1)
        self.assertIs(root.components[0], self.block.instances[self.block.object_table[1]])
        self.assertEqual(len(root.children), 1)
        child = root.children[0]
        self.assertEqual(child.name, "Child")
        self.assertIs(child.parent, root)
        self.assertEqual(child.components, [])

    def test_dangling_parent(self):
        with self.assertRaises(RszReferenceError):
            build_object_tree(self.block.instances, self.block.object_table, infos((0, -1, 1), (2, 5, 0)))
        self.assertEqual(self.block.object_table, [1, 2, 3])

    def test_component_slot_out_of_range(self):
        with self.assertRaises(RszReferenceError):
            build_object_tree(self.block.instances, self.block.object_table, infos((2, -1, 1)))

    def test_parent_cycle(self):
        with self.assertRaises(RszReferenceError):
            build_object_tree(self.block.instances, self.block.object_table, infos((0, 2, 1), (2, 0, 0)))

    def test_parent_is_weak(self):
        parent = GameObjectNode(PfbGameObjectInfo())
        child = GameObjectNode(PfbGameObjectInfo())
        parent.add_child(child)
        self.assertIs(child.parent, parent)
        del parent
        gc.collect()
        self.assertIsNone(child.parent)

    def test_add_child_moves_between_parents(self):
        first = GameObjectNode(PfbGameObjectInfo())
        second = GameObjectNode(PfbGameObjectInfo())
        child = GameObjectNode(PfbGameObjectInfo())
        first.add_child(child)
        second.add_child(child)
        self.assertEqual(first.children, [])
        self.assertIs(child.parent, second)
        self.assertEqual(list(second.walk()), [second, child])


class TestRebuild(unittest.TestCase):

    def setUp(self):
        self.registry = make_registry()

    def load(self, with_orphan=False):
        object_table, instances, userdata = prefab_instances(with_orphan)
        block = read_rsz_block(build_rsz_block(object_table, instances, userdata), self.registry, 71)
        block.bind_references()
        roots = build_object_tree(block.instances, block.object_table, infos((0, -1, 1), (2, 0, 1)))
        return block, roots

    def test_rebuild_of_unchanged_tree_keeps_ordinals(self):
        block, roots = self.load()
        before = list(block.instances)
        result = rebuild_flat_tables(roots, block.instances)
        self.assertEqual(result.object_table, block.object_table)
        self.assertEqual([id(i) for i in result.instances], [id(i) for i in before])
        self.assertEqual(result.pruned_count, 0)
        self.assertEqual([(i.object_id, i.parent_id, i.component_count) for i in result.infos],
                         [(0, -1, 1), (2, 0, 1)])

    def test_referenced_instances_precede_referrer(self):
        block, roots = self.load()
        result = rebuild_flat_tables(roots, block.instances)
        position = {id(instance): index for index, instance in enumerate(result.instances)}
        for instance in result.instances[1:]:
            for ref in instance.references():
                if ref.target is not None:
                    self.assertLess(position[id(ref.target)], position[id(instance)])
        self.assertTrue(result.instances[0].is_null)

    def test_tree_flat_equivalence(self):
        block, roots = self.load()
        result = rebuild_flat_tables(roots, block.instances)
        block.replace_tables(result.object_table, result.instances)
        rebuilt = build_object_tree(block.instances, block.object_table, result.infos)
        self.assertEqual([shape(root) for root in rebuilt], [shape(root) for root in roots])

    def test_unreachable_instances_are_pruned(self):
        block, roots = self.load(with_orphan=True)
        result = rebuild_flat_tables(roots, block.instances)
        self.assertEqual(result.pruned_count, 1)
        self.assertIs(result.pruned[0], block.instances[8])
        self.assertEqual(len(result.instances), 8)

    def test_removed_subtree_is_pruned(self):
        block, roots = self.load()
        root = roots[0]
        root.remove_child(root.children[0])
        result = rebuild_flat_tables(roots, block.instances)
        # Child game object, inventory, two items and the user data instance
        self.assertEqual(result.pruned_count, 5)
        self.assertEqual(result.object_table, [1, 2])

    def test_nested_components_option(self):
        block, roots = self.load()
        inventory = roots[0].children[0].components[0]
        result = rebuild_flat_tables(roots, block.instances, nested_components_in_object_table=False)
        # Child's inventory directly follows the child game object instead of taking a table slot
        self.assertEqual(result.object_table, [1, 2, 6])
        self.assertEqual(len(result.instances), 8)
        self.assertIs(result.instances[7], inventory)
        self.assertEqual(result.infos[1].component_count, 1)

        block.replace_tables(result.object_table, result.instances)
        rebuilt = build_object_tree(block.instances, block.object_table, result.infos,
                                    nested_components_in_object_table=False)
        self.assertEqual([shape(root) for root in rebuilt], [shape(root) for root in roots])
        self.assertIs(rebuilt[0].children[0].components[0], inventory)

    def test_nested_component_shared_with_another_object(self):
        block, roots = self.load()
        roots[0].components.append(roots[0].children[0].components[0])
        with self.assertRaises(RszReferenceError):
            rebuild_flat_tables(roots, block.instances, nested_components_in_object_table=False)

    def test_new_component_is_flattened(self):
        block, roots = self.load()
        extra = roots[0].components[0].clone()
        roots[0].children[0].components.append(extra)
        result = rebuild_flat_tables(roots, block.instances)
        self.assertEqual(len(result.object_table), 5)
        self.assertIs(result.instances[result.object_table[4]], extra)
        self.assertEqual(result.infos[1].component_count, 2)


class TestAdapt(unittest.TestCase):

    def test_adapt_copies_tree_and_user_data(self):
        registry = make_registry()
        object_table, instances, userdata = prefab_instances()
        block = read_rsz_block(build_rsz_block(object_table, instances, userdata), registry, 71)
        block.bind_references()
        roots = build_object_tree(block.instances, block.object_table, infos((0, -1, 1), (2, 0, 1)))

        copy = adapt_tree(roots[0], PfbGameObjectInfo.from_info)
        self.assertIsNone(copy.info.object_id)
        self.assertIsNone(copy.info.parent_id)
        self.assertEqual(shape(copy), shape(roots[0]))
        self.assertIsNot(copy.instance, roots[0].instance)

        inventory = copy.children[0].components[0]
        self.assertIsNot(inventory, block.instances[7])
        settings = inventory.get_field("Settings").target
        self.assertIsNot(settings, block.instances[6])
        self.assertIsNotNone(settings.user_data)
        self.assertIsNot(settings.user_data, block.instances[6].user_data)
        self.assertEqual(settings.user_data.path, block.instances[6].user_data.path)

        # The source tree is untouched
        self.assertEqual(roots[0].info.object_id, 0)
        self.assertIs(roots[0].children[0].components[0], block.instances[7])


if __name__ == "__main__":
    unittest.main()
