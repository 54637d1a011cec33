import os
import json
import logging

logger = logging.getLogger(__name__)

SETTINGS_FILE = os.environ.get("RSZ_SETTINGS_FILE") or os.path.join(os.getcwd(), "settings.json")
DEFAULT_SETTINGS = {
    "registry_dir": os.path.join(os.getcwd(), "resources", "data", "dumps"),
    "default_game": "re4",
    "log_level": "INFO",
    "nested_components_in_object_table": True,
}


def load_settings():
    if os.path.exists(SETTINGS_FILE):
        try:
            with open(SETTINGS_FILE, "r") as f:
                settings = json.load(f)
            # Ensure all default keys are present
            for key, value in DEFAULT_SETTINGS.items():
                settings.setdefault(key, value)
            return settings
        except (IOError, json.JSONDecodeError) as e:
            logger.error("Error loading settings: %s", e)
    return DEFAULT_SETTINGS.copy()


def save_settings(settings):
    try:
        with open(SETTINGS_FILE, "w") as f:
            json.dump(settings, f, indent=4)
    except IOError as e:
        logger.error("Error saving settings: %s", e)
