"""Plugins bundled with scaffoldkit.

Each subdirectory is a regular plugin directory (``plugin.py`` plus
``templates/``) and is loaded through the registry like any user plugin.
"""

from pathlib import Path

BUILTIN_PLUGIN_DIR = Path(__file__).resolve().parent
