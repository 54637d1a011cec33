#python rsz_roundtrip.py <dir-or-files...> --game re4 --registry <path/to/rsz.json> [--rebuild]

#!/usr/bin/env python3
import os
import sys
import argparse
import logging
from typing import List

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from console_logger import setup_console_logging
from file_handlers.rsz.rsz_container import open_container
from file_handlers.rsz.rsz_errors import RszError
from file_handlers.rsz.rsz_game_profiles import get_profile
from settings import load_settings
from utils.registry_manager import RegistryManager

logger = logging.getLogger(__name__)

CONTAINER_MARKERS = (".scn", ".pfb", ".user")


def iter_container_files(paths: List[str]) -> List[str]:
    results: List[str] = []
    for path in paths:
        if os.path.isfile(path):
            results.append(path)
            continue
        for dirpath, dirnames, filenames in os.walk(path):
            for name in filenames:
                lower = name.lower()
                if any(marker + "." in lower for marker in CONTAINER_MARKERS):
                    results.append(os.path.join(dirpath, name))
    return sorted(results)


def roundtrip_file(filepath: str, profile, registry, rebuild: bool, nested_components: bool) -> dict:
    with open(filepath, "rb") as f:
        original = f.read()

    container = open_container(original, profile, registry,
                               nested_components_in_object_table=nested_components)
    container.filepath = filepath
    pruned = 0
    if rebuild:
        pruned = container.rebuild().pruned_count
    written = container.write()
    return {
        "identical": written == original,
        "size": len(original),
        "written_size": len(written),
        "diagnostics": len(container.diagnostics),
        "pruned": pruned,
    }


def main():
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Read RSZ containers (scn/pfb/user), write them back and compare the bytes.")
    parser.add_argument("paths", nargs="+", help="Container files or directories to scan")
    parser.add_argument("--game", "-g", default=settings["default_game"], help="Game id, e.g. re4, re2, mhrise")
    parser.add_argument("--registry", "-r", help="Path to the RSZ type registry JSON (defaults to the game's descriptor in registry_dir)")
    parser.add_argument("--rebuild", action="store_true", help="Rebuild the object tables from the game object tree before writing")
    parser.add_argument("--log-level", default=settings["log_level"], help="Logging level")

    args = parser.parse_args()
    setup_console_logging(args.log_level)

    try:
        profile = get_profile(args.game)
    except KeyError as e:
        parser.error(str(e))

    manager = RegistryManager.instance()
    if args.registry:
        registry = manager.get_registry(args.registry)
    else:
        registry = manager.registry_for_profile(profile, settings["registry_dir"])
    if registry is None:
        parser.error("No type registry available; pass --registry")

    files = iter_container_files(args.paths)
    failures = 0
    for filepath in files:
        try:
            report = roundtrip_file(filepath, profile, registry, args.rebuild,
                                    settings["nested_components_in_object_table"])
        except (RszError, OSError) as e:
            failures += 1
            print(f"[fail] {filepath}: {e}")
            continue
        status = "ok" if report["identical"] else "diff"
        if not report["identical"]:
            failures += 1
        print(f"[{status}] {filepath}: {report['size']} -> {report['written_size']} bytes, "
              f"{report['diagnostics']} diagnostics, {report['pruned']} pruned")

    print(f"{len(files) - failures}/{len(files)} files round-tripped")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
