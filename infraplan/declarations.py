"""
DeclarationLoader - Load declaration files into a ResourceSet.

The loader provides:
- Reading every YAML or JSON file under a declarations directory
- A stable file order (sorted relative paths) so declaration order is reproducible
- Compilation through infraplan.compiler with stage settings
- A content hash of the compiled set for change detection

Example directory structure:
    declarations/
        api.yaml
        cdn.yaml
        _drafts/
            experiment.yaml     # skipped: path component starts with "_"
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from infraplan.compiler import compile_documents
from infraplan.errors import DeclarationError
from infraplan.schemas import ResourceSet

logger = logging.getLogger(__name__)

DECLARATION_SUFFIXES = (".yaml", ".yml", ".json")

# Sample stacks shipped with the package
STACKS_DIR = Path(__file__).parent / "stacks"


def list_stacks() -> list[str]:
    """Names of the sample stacks bundled with infraplan."""
    if not STACKS_DIR.exists():
        return []
    return sorted(p.name for p in STACKS_DIR.iterdir() if p.is_dir() and not p.name.startswith("_"))


def stack_dir(name: str) -> Path:
    """
    Directory of a bundled sample stack.

    Raises:
        DeclarationError: If no stack with that name is bundled
    """
    path = STACKS_DIR / name
    if not path.is_dir():
        raise DeclarationError(f"Unknown stack: {name}. Available: {list_stacks()}")
    return path


class DeclarationLoader:
    """
    Loader for declaration directories.

    Usage:
        loader = DeclarationLoader(declarations_dir)
        resources = loader.load(ctx={"domain_names": "example.com"})
    """

    def __init__(self, declarations_dir: Path | str):
        """
        Initialize the loader.

        Args:
            declarations_dir: Directory (or single file) holding declarations
        """
        self._declarations_dir = Path(declarations_dir).expanduser()

    @property
    def declarations_dir(self) -> Path:
        return self._declarations_dir

    def list_files(self) -> list[Path]:
        """
        List declaration files in load order.

        Returns:
            Sorted declaration file paths

        Raises:
            DeclarationError: If the directory does not exist
        """
        root = self._declarations_dir
        if root.is_file():
            return [root]
        if not root.is_dir():
            raise DeclarationError(f"Declarations directory not found: {root}")

        files = []
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in DECLARATION_SUFFIXES:
                continue
            relative = path.relative_to(root)
            if any(part.startswith("_") for part in relative.parts):
                continue
            files.append(path)
        return files

    def _load_file(self, path: Path) -> Any:
        """
        Load a declaration file (YAML or JSON).

        Raises:
            DeclarationError: If parsing fails
        """
        suffix = path.suffix.lower()
        try:
            with open(path) as f:
                if suffix in (".yaml", ".yml"):
                    return yaml.safe_load(f) or {}
                return json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise DeclarationError(f"Failed to parse {path}: {e}")

    def load(self, ctx: Optional[dict[str, Any]] = None) -> ResourceSet:
        """
        Load and compile every declaration file.

        Args:
            ctx: Stage settings for @ctx.* resolution

        Returns:
            Compiled ResourceSet

        Raises:
            DeclarationError: If a file is missing, unparseable, or invalid
            DuplicateIdError: If a logical id is declared in two places
        """
        files = self.list_files()
        if not files:
            raise DeclarationError(f"No declaration files found in {self._declarations_dir}")

        documents = []
        for path in files:
            logger.debug(f"Loading declarations from {path}")
            documents.append((path.name, self._load_file(path)))

        resources = compile_documents(documents, ctx)
        logger.info(
            f"Loaded {len(resources)} resources and {len(resources.outputs)} outputs "
            f"from {len(files)} files"
        )
        return resources
