import json
import os
import re
from typing import Any, Dict

from loguru import logger

from tools.errors import ManifestLoadError

INSTALL_MANIFEST = "install.jsonc"
SERVICE_DEFINITION = "serviceDefinition.jsonc"

# Block comments, or line comments not preceded by a backslash or colon
# (keeps the "//" of "https://" intact).
_COMMENTS = re.compile(r"/\*[\s\S]*?\*/|([^\\:]|^)//.*$", re.MULTILINE)


def strip_jsonc_comments(content: str) -> str:
    """Remove // and /* */ comments from a JSONC document."""
    return _COMMENTS.sub(lambda m: m.group(1) or "", content).strip()


def read_jsonc(manifest_dir: str, filename: str) -> Dict[str, Any]:
    """
    Read and parse a JSON-with-comments manifest.

    Args:
        manifest_dir: Directory holding the manifest files
        filename: Manifest file name, relative to ``manifest_dir``

    Returns:
        The parsed document (a fresh object on every call)

    Raises:
        ManifestLoadError: if the file is missing, unreadable or not valid JSON
    """
    full_path = os.path.join(manifest_dir, filename)

    if not os.path.exists(full_path):
        logger.error(f"Manifest not found: {full_path}")
        raise ManifestLoadError(filename, "not found")

    try:
        with open(full_path, "r", encoding="utf-8") as f:
            content = f.read()
        return json.loads(strip_jsonc_comments(content))
    except (OSError, ValueError) as e:
        logger.error(f"Error reading {filename}: {e}")
        raise ManifestLoadError(filename, str(e)) from e
