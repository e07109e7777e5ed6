"""
Agent documents for CodeBakers.

An agent is a markdown persona document: a title, a role, the triggers
that say when to use it, anti-patterns, code snippets, a checklist and the
lessons folded into it over time.

    # Stripe Payments Agent

    > Subscriptions, webhooks and the customer portal.

    ## Role
    ## Triggers
    ## Anti-Patterns
    ## Code Snippets
    ## Checklist
    ## Lessons Learned
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging
import re

from .errors import AgentNotFoundError, ValidationReport
from .utils import slugify

logger = logging.getLogger(__name__)

SECTION_ALIASES = {
    "role": "role",
    "triggers": "triggers",
    "when to use": "triggers",
    "anti-patterns": "anti_patterns",
    "anti patterns": "anti_patterns",
    "antipatterns": "anti_patterns",
    "avoid": "anti_patterns",
    "code snippets": "snippets",
    "snippets": "snippets",
    "checklist": "checklist",
    "quality checklist": "checklist",
    "lessons learned": "lessons",
}

LESSONS_HEADING = "## Lessons Learned"
SKIPPED_FILES = {"readme", "index"}

BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*\S)\s*$")
CHECKBOX_RE = re.compile(r"^\s*[-*+]\s+\[([ xX])\]\s+(.*\S)\s*$")
LESSON_MARKER_RE = re.compile(r"<!--\s*lesson:([\w.-]+)\s*-->")

AGENT_TEMPLATE = """# {title}

> One line on what this agent is for.

## Role

You are a senior engineer responsible for {title_lower}. Describe the
standards you hold and the decisions you make on your own.

## Triggers

- {trigger}

## Anti-Patterns

- Describe a mistake this agent must never make.

## Code Snippets

```ts
// Reference implementation goes here
```

## Checklist

- [ ] Describe what must be true before the work is done.
"""


@dataclass
class ChecklistItem:
    text: str
    checked: bool = False


@dataclass
class CodeSnippet:
    language: str
    code: str


@dataclass
class AgentDocument:
    """A parsed agent document."""

    name: str
    title: str = ""
    summary: str = ""
    role: str = ""
    triggers: list[str] = field(default_factory=list)
    anti_patterns: list[str] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)
    snippets: list[CodeSnippet] = field(default_factory=list)
    lesson_ids: list[str] = field(default_factory=list)
    sections: dict[str, str] = field(default_factory=dict)
    path: Optional[Path] = None
    unterminated_fence: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "title": self.title,
            "summary": self.summary,
            "role": self.role,
            "triggers": self.triggers,
            "anti_patterns": self.anti_patterns,
            "checklist": [{"text": c.text, "checked": c.checked} for c in self.checklist],
            "snippets": [{"language": s.language, "code": s.code} for s in self.snippets],
            "lessons": self.lesson_ids,
            "path": str(self.path) if self.path else None,
        }


def _bullets(body: str) -> list[str]:
    items = []
    for line in _outside_fences(body):
        match = BULLET_RE.match(line)
        if match:
            items.append(match.group(1).strip())
    return items


def _outside_fences(body: str) -> list[str]:
    """Lines of body that are not inside fenced code blocks."""
    lines = []
    in_fence = False
    for line in body.splitlines():
        if line.lstrip().startswith(("```", "~~~")):
            in_fence = not in_fence
            continue
        if not in_fence:
            lines.append(line)
    return lines


def _clean_trigger(text: str) -> str:
    return text.strip().strip("`\"'").strip()


def parse_agent(text: str, name: str, path: Optional[Path] = None) -> AgentDocument:
    """Parse an agent markdown document."""
    doc = AgentDocument(name=name, path=path)

    section_key: Optional[str] = None
    section_lines: dict[str, list[str]] = {}
    summary_lines: list[str] = []

    in_fence = False
    fence_lang = ""
    fence_lines: list[str] = []

    for line in text.splitlines():
        stripped = line.strip()

        if stripped.startswith(("```", "~~~")):
            if not in_fence:
                in_fence = True
                fence_lang = stripped[3:].strip()
                fence_lines = []
            else:
                in_fence = False
                doc.snippets.append(CodeSnippet(language=fence_lang, code="\n".join(fence_lines)))
            if section_key:
                section_lines[section_key].append(line)
            continue

        if in_fence:
            fence_lines.append(line)
            if section_key:
                section_lines[section_key].append(line)
            continue

        if line.startswith("# ") and not doc.title:
            doc.title = line[2:].strip()
            continue

        if line.startswith("## "):
            heading = line[3:].strip()
            section_key = SECTION_ALIASES.get(heading.lower(), heading.lower())
            section_lines.setdefault(section_key, [])
            continue

        if section_key is None:
            if stripped.startswith(">"):
                summary_lines.append(stripped.lstrip(">").strip())
            continue

        section_lines[section_key].append(line)

    if in_fence:
        doc.unterminated_fence = True
        doc.snippets.append(CodeSnippet(language=fence_lang, code="\n".join(fence_lines)))

    doc.summary = " ".join(s for s in summary_lines if s)
    doc.sections = {key: "\n".join(lines).strip() for key, lines in section_lines.items()}

    doc.role = "\n".join(_outside_fences(doc.sections.get("role", ""))).strip()

    triggers = _bullets(doc.sections.get("triggers", ""))
    if not triggers:
        # Allow "chatbot, voice agent, vapi" on one line
        for line in _outside_fences(doc.sections.get("triggers", "")):
            triggers.extend(t for t in line.split(",") if t.strip())
    doc.triggers = [t for t in (_clean_trigger(t) for t in triggers) if t]

    doc.anti_patterns = _bullets(doc.sections.get("anti_patterns", ""))

    for line in _outside_fences(doc.sections.get("checklist", "")):
        box = CHECKBOX_RE.match(line)
        if box:
            doc.checklist.append(ChecklistItem(text=box.group(2).strip(), checked=box.group(1) != " "))
            continue
        bullet = BULLET_RE.match(line)
        if bullet:
            doc.checklist.append(ChecklistItem(text=bullet.group(1).strip()))

    doc.lesson_ids = LESSON_MARKER_RE.findall(text)
    return doc


def lint_agent(doc: AgentDocument) -> ValidationReport:
    """Check an agent document for missing or malformed sections."""
    report = ValidationReport()
    prefix = doc.name

    if not doc.title:
        report.error(f"{prefix}:title", "Missing '# Title' heading.")
    if not doc.role:
        report.error(f"{prefix}:role", "Missing or empty '## Role' section.")
    if not doc.triggers:
        report.error(f"{prefix}:triggers", "Missing or empty '## Triggers' section.")
    if doc.unterminated_fence:
        report.error(f"{prefix}:snippets", "Unterminated code fence.")

    if not doc.checklist:
        report.warning(f"{prefix}:checklist", "No checklist items.")
    if not doc.anti_patterns:
        report.warning(f"{prefix}:anti_patterns", "No anti-patterns listed.")

    for i, snippet in enumerate(doc.snippets):
        if not snippet.language:
            report.warning(f"{prefix}:snippets[{i}]", "Code fence has no language tag.")

    seen = set()
    for trigger in doc.triggers:
        key = trigger.lower()
        if key in seen:
            report.warning(f"{prefix}:triggers", f"Duplicate trigger '{trigger}'.")
        seen.add(key)

    return report


@dataclass
class AgentMatch:
    """An agent whose triggers occur in a task description."""

    agent: AgentDocument
    score: int
    matched: list[str] = field(default_factory=list)


class AgentLibrary:
    """
    The agents/ directory of a workspace.

    One markdown file per agent; the file stem is the agent's name.
    """

    def __init__(self, agents_dir: Path):
        self.agents_dir = agents_dir
        self._agents: dict[str, AgentDocument] = {}

    @classmethod
    def load(cls, agents_dir: Path) -> "AgentLibrary":
        """Load every agent document in agents_dir."""
        library = cls(agents_dir)

        if agents_dir.exists():
            for path in sorted(agents_dir.glob("*.md")):
                if path.stem.lower() in SKIPPED_FILES:
                    continue
                library._agents[path.stem] = parse_agent(path.read_text(), path.stem, path)

        logger.debug(f"Loaded {len(library._agents)} agents from {agents_dir}")
        return library

    def list_agents(self) -> list[AgentDocument]:
        return [self._agents[name] for name in sorted(self._agents)]

    def get_agent(self, name: str) -> AgentDocument:
        if name not in self._agents:
            raise AgentNotFoundError(name)
        return self._agents[name]

    def has_agent(self, name: str) -> bool:
        return name in self._agents

    def lint_all(self) -> dict[str, ValidationReport]:
        """Lint every agent, flagging triggers claimed by more than one agent."""
        reports = {name: lint_agent(doc) for name, doc in self._agents.items()}

        owners: dict[str, list[str]] = {}
        for name, doc in self._agents.items():
            for trigger in {t.lower() for t in doc.triggers}:
                owners.setdefault(trigger, []).append(name)

        for trigger, names in owners.items():
            if len(names) < 2:
                continue
            for name in names:
                others = ", ".join(sorted(n for n in names if n != name))
                reports[name].warning(f"{name}:triggers", f"Trigger '{trigger}' also used by {others}.")

        return {name: reports[name] for name in sorted(reports)}

    def match(self, task: str, limit: int = 3) -> list[AgentMatch]:
        """
        Rank agents by how many of their triggers appear in task.

        Triggers match as whole words or phrases; multi-word triggers
        count double.
        """
        text = task.lower()
        matches = []

        for doc in self._agents.values():
            hits = []
            for trigger in doc.triggers:
                needle = trigger.lower()
                if re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", text):
                    hits.append(trigger)
            if hits:
                score = sum(2 if len(h.split()) > 1 else 1 for h in hits)
                matches.append(AgentMatch(agent=doc, score=score, matched=hits))

        matches.sort(key=lambda m: (-m.score, m.agent.name))
        return matches[:limit] if limit else matches

    def create_agent(self, name: str, title: Optional[str] = None) -> AgentDocument:
        """Scaffold a new agent document from the built-in template."""
        slug = slugify(name)
        if not slug:
            raise ValueError(f"Invalid agent name: {name!r}")

        path = self.agents_dir / f"{slug}.md"
        if path.exists():
            raise FileExistsError(f"Agent already exists: {path}")

        title = title or f"{name.replace('-', ' ').title()} Agent"
        text = AGENT_TEMPLATE.format(
            title=title,
            title_lower=title.lower(),
            trigger=name.replace("-", " ").lower(),
        )

        self.agents_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        logger.info(f"Created agent {slug} at {path}")

        doc = parse_agent(text, slug, path)
        self._agents[slug] = doc
        return doc

    def append_lesson(self, name: str, lesson_id: str, entry: str) -> bool:
        """
        Fold a lesson entry into an agent's Lessons Learned section.

        The section is created at the end of the document when missing.
        Returns False if the lesson was already folded in.
        """
        doc = self.get_agent(name)
        text = doc.path.read_text()

        marker = f"<!-- lesson:{lesson_id} -->"
        if marker in text:
            return False

        lines = text.splitlines()
        heading_idx = None
        end_idx = len(lines)
        in_fence = False

        for i, line in enumerate(lines):
            if line.strip().startswith(("```", "~~~")):
                in_fence = not in_fence
                continue
            if in_fence or not line.startswith("## "):
                continue
            if heading_idx is None:
                if line[3:].strip().lower() == "lessons learned":
                    heading_idx = i
            else:
                end_idx = i
                break

        block = [marker, *entry.strip().splitlines()]

        if heading_idx is None:
            head = list(lines)
            tail: list[str] = []
            while head and not head[-1].strip():
                head.pop()
            head += ["", LESSONS_HEADING]
        else:
            head = lines[:end_idx]
            tail = lines[end_idx:]
            while head and not head[-1].strip():
                head.pop()

        new_lines = head + [""] + block
        if tail:
            new_lines += [""] + tail

        new_text = "\n".join(new_lines) + "\n"
        doc.path.write_text(new_text)
        self._agents[name] = parse_agent(new_text, name, doc.path)

        logger.info(f"Folded lesson {lesson_id} into agent {name}")
        return True
