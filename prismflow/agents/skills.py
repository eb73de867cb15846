"""SkillService — discovers SKILL.md instruction bundles on disk."""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from prismflow.config import settings

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"

_FRONTMATTER = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*\r?\n(.*)$", re.DOTALL)

_PROMPT_HEADER = (
    "## Available Skills\n\n"
    "You have access to the following skills. To use a skill, follow its "
    "instructions and use the 'execute_command' tool to run the provided "
    "command examples. Always ensure you are in the correct directory "
    "(provided in 'Location') or use absolute paths when calling scripts.\n\n"
)


@dataclass
class Skill:
    id: str
    name: str
    description: str
    instructions: str
    dir_path: Path
    bins: list[str] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)


class SkillParseError(ValueError):
    pass


def parse_skill_file(path: Path) -> Skill:
    """Parse one ``<dir>/SKILL.md``; the skill id is the directory name."""
    match = _FRONTMATTER.match(path.read_text(encoding="utf-8"))
    if match is None:
        msg = f"{path}: missing frontmatter"
        raise SkillParseError(msg)
    frontmatter = yaml.safe_load(match.group(1)) or {}
    if not isinstance(frontmatter, dict):
        msg = f"{path}: frontmatter is not a mapping"
        raise SkillParseError(msg)
    skill_id = path.parent.name
    return Skill(
        id=skill_id,
        name=frontmatter.get("name") or skill_id,
        description=frontmatter.get("description") or "",
        instructions=match.group(2).strip(),
        dir_path=path.parent.resolve(),
        bins=list(frontmatter.get("bins") or []),
        frontmatter=frontmatter,
    )


class SkillService:
    """Loads skills from the configured search paths.

    Args:
        search_paths: Directories scanned for ``*/SKILL.md``. When two paths
            define the same skill id, the earlier path wins.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths = (
            list(search_paths) if search_paths is not None else settings.get_skill_paths()
        )
        self._skills: dict[str, Skill] = {}

    def refresh(self) -> None:
        """Rescan every search path."""
        self._skills.clear()
        for search_path in reversed(self._search_paths):
            if not search_path.is_dir():
                continue
            for skill_file in sorted(search_path.glob(f"*/{SKILL_FILE}")):
                try:
                    skill = parse_skill_file(skill_file)
                except (OSError, SkillParseError, yaml.YAMLError):
                    logger.exception("Failed to parse skill at %s", skill_file)
                    continue
                self._skills[skill.id] = skill
                logger.info("Loaded skill: %s (%s) from %s", skill.name, skill.id, search_path)

    def get(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    def list_skills(self) -> list[Skill]:
        return list(self._skills.values())

    def build_prompt(self, skill_ids: Iterable[str]) -> str:
        """Render the prompt block for the usable skills among *skill_ids*."""
        sections: list[str] = []
        for skill_id in skill_ids:
            skill = self._skills.get(skill_id)
            if skill is None:
                logger.warning("Unknown skill requested: %s", skill_id)
                continue
            if not self._dependencies_met(skill):
                logger.warning("Skipping skill %s due to missing dependencies", skill.name)
                continue
            sections.append(
                f"### Skill: {skill.name}\n"
                f"ID: {skill.id}\n"
                f"Location: {skill.dir_path}\n"
                f"Instructions:\n{skill.instructions}\n\n"
            )
        if not sections:
            return ""
        return _PROMPT_HEADER + "".join(sections)

    @staticmethod
    def _dependencies_met(skill: Skill) -> bool:
        missing = [b for b in skill.bins if shutil.which(b) is None]
        if missing:
            logger.error("Dependency missing for skill %s: %s", skill.name, ", ".join(missing))
            return False
        return True
