import logging
import os
import threading

from .type_registry import ClassRegistry

logger = logging.getLogger(__name__)


class RegistryManager:
    """Caches ClassRegistry instances so each descriptor JSON is parsed once per process"""

    _instance = None

    @staticmethod
    def instance():
        """Get singleton instance"""
        if not RegistryManager._instance:
            RegistryManager._instance = RegistryManager()
        return RegistryManager._instance

    def __init__(self):
        self._registries = {}
        self._last_mod_times = {}
        self._lock = threading.Lock()

    def get_registry(self, json_path):
        """Get or create the ClassRegistry for ``json_path``; None if the file does not exist"""
        if not json_path or not os.path.exists(json_path):
            logger.error("Registry JSON not found: %s", json_path)
            return None

        with self._lock:
            if json_path in self._registries and not self._file_needs_reload(json_path):
                return self._registries[json_path]

            registry = ClassRegistry(json_path)
            self._registries[json_path] = registry
            self._last_mod_times[json_path] = os.path.getmtime(json_path)
            logger.info("Loaded %d classes from %s", len(registry), json_path)
            return registry

    def registry_for_profile(self, profile, registry_dir):
        """Registry for a game profile, looked up as ``registry_dir/profile.registry_json``"""
        return self.get_registry(os.path.join(registry_dir, profile.registry_json))

    def _file_needs_reload(self, file_path):
        if file_path not in self._registries:
            return True
        try:
            current_mod_time = os.path.getmtime(file_path)
        except OSError as e:
            logger.warning("Could not stat %s: %s", file_path, e)
            return True
        return current_mod_time > self._last_mod_times.get(file_path, 0)

    def clear(self):
        """Clear all cached registries"""
        with self._lock:
            self._registries.clear()
            self._last_mod_times.clear()
