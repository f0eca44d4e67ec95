"""Environment variable loading for the feedback pipeline.

Loads a ``.env`` file with python-dotenv before configuration is read.
Entrypoints call ``load_env()`` once at startup; tests call it from conftest.

The ``.env`` file is looked up in the current working directory first, then
in the project root (the first parent holding ``pyproject.toml`` or ``.git``).
Variables already present in the process environment win over ``.env`` values.
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv as _load_dotenv

logger = logging.getLogger(__name__)


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Return the closest parent directory that looks like the project root."""
    current = start_path or Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return None


def find_env_file(filename: str = ".env") -> Optional[Path]:
    """Locate ``filename`` in the working directory or the project root."""
    cwd_env = Path.cwd() / filename
    if cwd_env.exists():
        return cwd_env

    project_root = find_project_root()
    if project_root:
        root_env = project_root / filename
        if root_env.exists():
            return root_env
    return None


def load_env(
    env_file: Optional[str] = None,
    override: bool = False,
    verbose: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Args:
        env_file: Explicit path. If None, searches the standard locations.
        override: If True, .env values replace existing environment variables.
        verbose: If True, log which file was loaded.

    Returns:
        True if a file was found and loaded.
    """
    dotenv_path = Path(env_file) if env_file else find_env_file()
    if dotenv_path is None or not dotenv_path.exists():
        if verbose:
            logger.info("No .env file found, using process environment only")
        return False

    if verbose:
        logger.info("Loading environment file", extra={"path": str(dotenv_path)})

    _load_dotenv(dotenv_path=dotenv_path, override=override)
    return True
