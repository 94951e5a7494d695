"""
Central configuration for pkengine paths and system settings.

Mode detection:
    1. Find project root (parent of bin/ where pkengine scripts are located)
    2. If .pkengine.local exists in project root -> read config from it (DEV mode)
    3. If /usr/bin/pkengine exists -> PROD mode (system installation)
    4. Otherwise -> DEV mode (development)

PROD mode: /var/lib/pkengine/
DEV mode:  /var/lib/pkengine-dev/

Structure:
    <base_dir>/pkgdb.sqlite     - Package database (installed set + indexes)
    <base_dir>/pkgdb.lock       - Transaction lock file

.pkengine.local format (optional, one setting per line):
    base_dir=/path/to/custom/dir
    native_arch=x86_64-musl
    root_dir=/
    self_package=pkengine
    # Comments start with #
"""

import platform
import sys
from pathlib import Path
from typing import Mapping, Optional

# Config file name
LOCAL_CONFIG_FILE = ".pkengine.local"

PROD_BASE_DIR = Path("/var/lib/pkengine")
DEV_BASE_DIR = Path("/var/lib/pkengine-dev")

DB_FILENAME = "pkgdb.sqlite"
LOCK_FILENAME = "pkgdb.lock"

DEFAULT_SELF_PACKAGE = "pkengine"

# Cache for detected mode (avoid repeated filesystem checks)
_cached_config: Optional[dict] = None


def _get_project_root() -> Optional[Path]:
    """Find project root by looking at where the script is located.

    If running from ./bin/pkengine, project root is the parent of bin/.
    """
    if sys.argv and sys.argv[0]:
        script_path = Path(sys.argv[0]).resolve()
        if script_path.parent.name == 'bin':
            return script_path.parent.parent
    return None


def _read_local_config(project_root: Path) -> Optional[dict]:
    """Read .pkengine.local config file if it exists in project root.

    Returns:
        Dict with config values, or None if file doesn't exist
    """
    config_path = project_root / LOCAL_CONFIG_FILE
    if not config_path.exists():
        return None

    config = {}
    try:
        with open(config_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    config[key.strip()] = value.strip()
    except OSError:
        return None

    return config


def _is_system_install() -> bool:
    return Path("/usr/bin/pkengine").exists()


def _settings(base_dir: Path, is_dev: bool, overrides: Mapping) -> dict:
    return {
        'base_dir': base_dir,
        'db_path': base_dir / DB_FILENAME,
        'lock_path': base_dir / LOCK_FILENAME,
        'native_arch': overrides.get('native_arch') or platform.machine(),
        'root_dir': Path(overrides.get('root_dir') or '/'),
        'self_package': overrides.get('self_package') or DEFAULT_SELF_PACKAGE,
        'is_dev': is_dev,
    }


def _detect_mode() -> dict:
    """Detect configuration based on environment."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    project_root = _get_project_root()
    if project_root:
        local_config = _read_local_config(project_root)
        if local_config is not None:
            if 'base_dir' in local_config:
                base_dir = Path(local_config['base_dir']).expanduser()
            else:
                base_dir = DEV_BASE_DIR
            _cached_config = _settings(base_dir, True, local_config)
            return _cached_config

    if _is_system_install():
        _cached_config = _settings(PROD_BASE_DIR, False, {})
        return _cached_config

    _cached_config = _settings(DEV_BASE_DIR, True, {})
    return _cached_config


def reset_cache():
    """Forget the detected mode (tests, re-initialization)."""
    global _cached_config
    _cached_config = None


def load_config(overrides: Mapping = None) -> dict:
    """Return the effective settings, with overrides applied.

    Args:
        overrides: Optional mapping with any of base_dir, native_arch,
            root_dir, self_package (as passed to Backend.initialize)
    """
    settings = dict(_detect_mode())
    if not overrides:
        return settings

    if overrides.get('base_dir'):
        base_dir = Path(overrides['base_dir']).expanduser()
        settings.update(_settings(base_dir, settings['is_dev'], settings))
    for key in ('native_arch', 'self_package'):
        if overrides.get(key):
            settings[key] = overrides[key]
    if overrides.get('root_dir'):
        settings['root_dir'] = Path(overrides['root_dir'])
    return settings
