"""Code template catalog for CodeBakers."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import logging
import re
import shutil

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".ts", ".tsx", ".js", ".jsx", ".py", ".sql")


@dataclass
class TemplateInfo:
    """A reusable code template."""

    name: str
    filename: str
    language: str
    category: str
    description: str
    path: Path

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "filename": self.filename,
            "language": self.language,
            "category": self.category,
            "description": self.description,
        }


def describe_template(text: str, filename: str) -> str:
    """
    First meaningful line of the leading comment.

    Handles both /** ... */ blocks and // line comments. A line that just
    repeats the filename is skipped.
    """
    lines = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            if lines:
                break
            continue
        if line.startswith(("/**", "/*", "*", "//")):
            line = re.sub(r"^(/\*\*|/\*|\*/|\*|//)\s?", "", line).rstrip("*/").strip()
            lines.append(line)
            if raw.strip().endswith("*/"):
                break
            continue
        break

    for line in lines:
        if line and line != filename:
            return line
    return ""


class TemplateCatalog:
    """The templates/code directory of a workspace."""

    def __init__(self, templates_dir: Path):
        self.templates_dir = templates_dir

    def list_templates(self, category: Optional[str] = None) -> list[TemplateInfo]:
        if not self.templates_dir.exists():
            return []

        templates = []
        for path in sorted(self.templates_dir.iterdir()):
            if not path.is_file() or path.suffix not in TEMPLATE_SUFFIXES:
                continue
            info = TemplateInfo(
                name=path.stem,
                filename=path.name,
                language=path.suffix.lstrip("."),
                category=path.stem.split("-")[0],
                description=describe_template(path.read_text(), path.name),
                path=path,
            )
            if category and info.category != category:
                continue
            templates.append(info)

        return templates

    def get_template(self, name: str) -> Optional[TemplateInfo]:
        """Find a template by name (with or without extension)."""
        stem = Path(name).stem if Path(name).suffix in TEMPLATE_SUFFIXES else name
        for info in self.list_templates():
            if info.name == stem:
                return info
        return None

    def categories(self) -> list[str]:
        return sorted({t.category for t in self.list_templates()})

    def copy_template(self, name: str, dest: Path, force: bool = False) -> Path:
        """
        Copy a template into a project.

        dest may be a directory (the template keeps its filename) or a file
        path. Existing files are only replaced with force=True.
        """
        info = self.get_template(name)
        if not info:
            raise FileNotFoundError(f"Template not found: {name}")

        target = dest / info.filename if dest.is_dir() else dest
        if target.exists() and not force:
            raise FileExistsError(f"{target} already exists. Use force to overwrite.")

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(info.path, target)
        logger.info(f"Copied template {info.name} to {target}")
        return target
