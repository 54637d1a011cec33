# Functional tests for the USR / PFB / SCN containers: read, edit, rebuild, write.

import io
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from file_handlers.rsz.pfb_file import PfbFile
from file_handlers.rsz.rsz_container import ContainerState, open_container
from file_handlers.rsz.rsz_errors import ContainerStateError, IOBoundaryError, RszReferenceError, StructuralError
from file_handlers.rsz.rsz_game_profiles import get_profile
from file_handlers.rsz.scn_file import ScnFile
from file_handlers.rsz.usr_file import UsrFile
from rsz_fixtures import (
    LAMP_GUID,
    NULL,
    PREFAB_RESOURCES,
    PREFAB_USERDATA,
    SETTINGS_PATH,
    TYPE_TAG,
    build_rsz_block,
    build_usr,
    inst,
    make_registry,
    prefab_bytes,
    raw_payload,
    scene_bytes,
    usr_bytes,
)


class ContainerTestCase(unittest.TestCase):

    def setUp(self):
        self.registry = make_registry()
        self.profile = get_profile("re4")

    def open(self, data, **options):
        return open_container(data, self.profile, self.registry, **options)


class TestOpenContainer(ContainerTestCase):

    def test_dispatch_on_magic(self):
        self.assertIsInstance(self.open(usr_bytes()), UsrFile)
        self.assertIsInstance(self.open(prefab_bytes()), PfbFile)
        self.assertIsInstance(self.open(scene_bytes()), ScnFile)

    def test_unknown_magic(self):
        with self.assertRaises(StructuralError):
            self.open(b"MESH" + b"\x00" * 60)

    def test_open_from_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "bag.pfb.17")
            with open(path, "wb") as f:
                f.write(prefab_bytes())
            pfb = open_container(path, "re4", self.registry)
            self.assertEqual(pfb.filepath, path)
            self.assertEqual(pfb.write(), prefab_bytes())

    def test_failed_read_leaves_container_unloaded(self):
        pfb = PfbFile(self.profile, self.registry)
        with self.assertRaises(IOBoundaryError):
            pfb.read(prefab_bytes()[:120])
        self.assertEqual(pfb.state, ContainerState.UNLOADED)
        self.assertIsInstance(pfb.last_error, IOBoundaryError)
        self.assertIsNone(pfb.rsz)
        with self.assertRaises(ContainerStateError):
            pfb.write()

    def test_bad_string_bytes_fail_the_read(self):
        block = build_rsz_block([1], [NULL, inst(TYPE_TAG, raw_payload(b"\x02\x00\x00\x00\xff\x00"))])
        usr = UsrFile(self.profile, self.registry)
        with self.assertRaises(StructuralError):
            usr.read(build_usr(block))
        self.assertEqual(usr.state, ContainerState.UNLOADED)
        self.assertIsInstance(usr.last_error, StructuralError)


class TestUsrFile(ContainerTestCase):

    def test_round_trip(self):
        data = usr_bytes()
        usr = self.open(data)
        self.assertEqual(usr.state, ContainerState.LOADED)
        self.assertEqual([r.path for r in usr.resource_infos], ["app/icon.tex.1"])
        self.assertEqual(usr.userdata_infos[0].path, SETTINGS_PATH)
        self.assertEqual(usr.write(), data)
        self.assertEqual(usr.state, ContainerState.WRITTEN)

    def test_no_tree_and_rebuild_keeps_roots(self):
        data = usr_bytes()
        usr = self.open(data)
        self.assertEqual(usr.root_objects(), [])
        result = usr.rebuild()
        self.assertEqual(result.pruned_count, 0)
        self.assertEqual(usr.write(), data)

    def test_field_edit_does_not_need_rebuild(self):
        usr = self.open(usr_bytes())
        inventory = usr.rsz.get_object_instance(0)
        inventory.set_field("Label", "Satchel")
        self.assertTrue(usr.is_dirty())

        reread = self.open(usr.write())
        self.assertEqual(reread.rsz.get_object_instance(0).get_field("Label").value, "Satchel")
        self.assertFalse(reread.is_dirty())

    def test_write_to_file_object(self):
        usr = self.open(usr_bytes())
        out = io.BytesIO()
        usr.write(out)
        self.assertEqual(out.getvalue(), usr_bytes())


class TestPfbFile(ContainerTestCase):

    def test_round_trip(self):
        data = prefab_bytes()
        pfb = self.open(data)
        self.assertEqual(len(pfb.gameobjects), 2)
        self.assertEqual(len(pfb.gameobject_ref_infos), 1)
        self.assertEqual([r.path for r in pfb.resource_infos], PREFAB_RESOURCES)
        self.assertEqual(pfb.diagnostics, [])
        self.assertEqual(pfb.write(), data)

    def test_tree(self):
        pfb = self.open(prefab_bytes())
        roots = pfb.root_objects()
        self.assertEqual(pfb.state, ContainerState.TREE_BUILT)
        self.assertEqual(len(roots), 1)
        self.assertEqual(roots[0].name, "Root")
        self.assertEqual([c.name for c in roots[0].components], ["via.Transform"])
        self.assertEqual(roots[0].children[0].name, "Child")
        self.assertEqual([c.name for c in roots[0].children[0].components], ["app.Inventory"])

    def test_rebuild_without_changes_is_identity(self):
        data = prefab_bytes()
        pfb = self.open(data)
        pfb.root_objects()
        result = pfb.rebuild()
        self.assertEqual(result.pruned_count, 0)
        self.assertEqual(pfb.state, ContainerState.WRITABLE)
        self.assertEqual(pfb.write(), data)

    def test_structural_edit_requires_rebuild(self):
        pfb = self.open(prefab_bytes())
        root = pfb.root_objects()[0]
        root.remove_child(root.children[0])
        pfb.mark_dirty()
        self.assertEqual(pfb.state, ContainerState.DIRTY)
        self.assertTrue(pfb.is_dirty())
        with self.assertRaises(ContainerStateError):
            pfb.write()

        with self.assertLogs("file_handlers.rsz.pfb_file", level="WARNING"):
            result = pfb.rebuild()
        self.assertEqual(result.pruned_count, 5)
        # The only GameObjectRef pointed from the removed inventory
        self.assertEqual(pfb.gameobject_ref_infos, [])

        reread = self.open(pfb.write())
        self.assertEqual(len(reread.gameobjects), 1)
        self.assertEqual(reread.rsz.object_table, [1, 2])
        self.assertEqual(reread.rsz.instance_count, 3)
        self.assertEqual(reread.rsz.userdata_infos, [])

    def test_ref_infos_follow_rebuild(self):
        pfb = self.open(prefab_bytes(with_orphan=True))
        result = pfb.rebuild()
        self.assertEqual(result.pruned_count, 1)
        ref = pfb.gameobject_ref_infos[0]
        self.assertEqual((ref.object_id, ref.target_id), (3, 0))

        reread = self.open(pfb.write())
        self.assertEqual(reread.write(), prefab_bytes())

    def test_rebuild_count(self):
        pfb = self.open(prefab_bytes(with_orphan=True))
        self.assertEqual(pfb.rebuild_count(), 1)
        self.assertEqual(pfb.rebuild_count(), 0)

    def test_userdata_table_follows_rebuild(self):
        pfb = self.open(prefab_bytes())
        self.assertEqual(len(pfb.userdata_infos), 1)
        root = pfb.root_objects()[0]
        root.remove_child(root.children[0])
        pfb.mark_dirty()
        pfb.rebuild()
        self.assertEqual(pfb.userdata_infos, [])

        reread = self.open(pfb.write())
        self.assertEqual(reread.userdata_infos, [])
        self.assertEqual(reread.rsz.userdata_infos, [])

    def test_nested_components_outside_object_table(self):
        data = prefab_bytes()
        pfb = self.open(data)
        child = pfb.root_objects()[0].children[0]
        pfb.nested_components_in_object_table = False

        # The GameObjectRefInfo is owned by the child's inventory, which would leave the object table
        with self.assertRaises(RszReferenceError):
            pfb.rebuild()
        self.assertEqual(pfb.state, ContainerState.TREE_BUILT)
        self.assertEqual(len(pfb.gameobject_ref_infos), 1)
        self.assertEqual((child.info.object_id, child.info.parent_id), (2, 0))
        self.assertEqual(pfb.write(), data)

        pfb.gameobject_ref_infos = []
        result = pfb.rebuild()
        self.assertEqual(result.pruned_count, 0)
        self.assertEqual(pfb.rsz.object_table, [1, 2, 6])
        self.assertEqual(pfb.gameobjects[1].component_count, 1)
        written = pfb.write()

        reread = self.open(written, nested_components_in_object_table=False)
        child = reread.root_objects()[0].children[0]
        self.assertEqual([c.name for c in child.components], ["app.Inventory"])
        self.assertEqual(child.components[0].get_field("Label").value, "Bag")
        reread.rebuild()
        self.assertEqual(reread.write(), written)

    def test_import_tree_from_scene(self):
        scene = self.open(scene_bytes())
        lamp = scene.root_objects()[1].children[0]
        self.assertEqual(lamp.name, "Lamp")

        pfb = self.open(prefab_bytes())
        result = pfb.import_tree(lamp)
        self.assertEqual(result.pruned_count, 7)
        self.assertEqual(pfb.state, ContainerState.WRITABLE)

        reread = self.open(pfb.write())
        roots = reread.root_objects()
        self.assertEqual(len(roots), 1)
        self.assertEqual(roots[0].name, "Lamp")
        self.assertEqual(roots[0].components[0].get_field("LocalPosition").value, (4.0, 0.0, -2.0))
        self.assertEqual(reread.rsz.object_table, [1, 2])
        # The scene itself is unchanged
        self.assertEqual(scene.write(), scene_bytes())


class TestScnFile(ContainerTestCase):

    def test_round_trip(self):
        data = scene_bytes()
        scn = self.open(data)
        self.assertEqual(len(scn.gameobjects), 2)
        self.assertEqual(len(scn.folder_infos), 1)
        self.assertEqual(scn.gameobjects[1].guid, LAMP_GUID)
        self.assertEqual(scn.prefab_path(scn.gameobjects[1]), "env/lamp.pfb.17")
        self.assertIsNone(scn.prefab_path(scn.gameobjects[0]))
        self.assertEqual(scn.write(), data)

    def test_folders_are_tree_nodes(self):
        scn = self.open(scene_bytes())
        player, env = scn.root_objects()
        self.assertEqual(player.name, "Player")
        self.assertTrue(env.is_folder)
        self.assertEqual(env.name, "Env")
        self.assertEqual(env.components, [])
        self.assertEqual([child.name for child in env.children], ["Lamp"])

    def test_rebuild_without_changes_is_identity(self):
        data = scene_bytes()
        scn = self.open(data)
        scn.rebuild()
        self.assertEqual(scn.write(), data)

    def test_import_tree_duplicates_object(self):
        scn = self.open(scene_bytes())
        player, env = scn.root_objects()
        copy = scn.import_tree(player, parent=env)
        self.assertIs(copy.parent, env)
        self.assertNotEqual(copy.info.guid, player.info.guid)
        with self.assertRaises(ContainerStateError):
            scn.write()

        result = scn.rebuild()
        self.assertEqual(result.pruned_count, 0)
        reread = self.open(scn.write())
        self.assertEqual(len(reread.gameobjects), 3)
        self.assertEqual([child.name for child in reread.root_objects()[1].children], ["Lamp", "Player"])

    def test_import_adds_userdata_entry(self):
        pfb = self.open(prefab_bytes())
        child = pfb.root_objects()[0].children[0]
        scn = self.open(scene_bytes())
        self.assertEqual(scn.userdata_infos, [])

        scn.import_tree(child)
        scn.rebuild()
        self.assertEqual([(u.type_id, u.crc, u.path) for u in scn.userdata_infos], PREFAB_USERDATA)

        reread = self.open(scn.write())
        self.assertEqual([(u.type_id, u.crc, u.path) for u in reread.userdata_infos], PREFAB_USERDATA)
        self.assertEqual(reread.rsz.userdata_infos[0].path, SETTINGS_PATH)


if __name__ == "__main__":
    unittest.main()
