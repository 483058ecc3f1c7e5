import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core import paths as core_paths


class CorePathsTests(unittest.TestCase):
    def test_output_structure_creates_every_subdir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp) / "run"
            core_paths.ensure_output_structure(root)
            for name in core_paths.OUTPUT_SUBDIRS:
                self.assertTrue((root / name).is_dir(), name)
            self.assertEqual(core_paths.get_status_dir(root), root / "status")
            self.assertEqual(core_paths.get_pretty_dir(root), root / "prettified_results")

    def test_resolve_output_root_expands_variables(self) -> None:
        with mock.patch.dict("os.environ", {"FANOUT_TEST_ROOT": "/srv/scans"}):
            resolved = core_paths.resolve_output_root("$FANOUT_TEST_ROOT/run1")
        self.assertEqual(resolved, Path("/srv/scans/run1").resolve())

    def test_partition_label(self) -> None:
        self.assertEqual(core_paths.partition_label("007"), "chunk_007")

    def test_settings_search_order(self) -> None:
        root = Path("/tmp/run")
        paths = core_paths.get_default_settings_paths(root, Path("/etc/fanout.json"))
        self.assertEqual(paths[0], Path("/etc/fanout.json").resolve())
        self.assertEqual(paths[1], root / "settings.json")
        self.assertEqual(paths[2].name, "settings.json")
        self.assertEqual(len(core_paths.get_default_settings_paths(root)), 2)


if __name__ == "__main__":
    unittest.main()
