from typing import Callable, Dict, List, Literal, Optional
from pathlib import Path
from datetime import date, datetime, timedelta, timezone
import re
import threading
import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

SOUL_FILE = "SOUL.md"
LONG_TERM_FILE = "MEMORY.md"
DAILY_DIR = "memory"
SKILLS_DIR = "skills"

DAILY_ENTRY = re.compile(r"^### (\d\d:\d\d:\d\d)\s*$", re.MULTILINE)
WORD = re.compile(r"\w+")


class MemoryContext(BaseModel):
    """Identity and memory text injected into the system prompt"""
    soul: str = ""
    long_term_memory: str = ""
    recent_activity: str = ""
    skills: str = ""


class MemorySearchResult(BaseModel):
    """One memory entry matching a search; lower distance is a closer match"""
    content: str
    memory_type: Literal["long_term", "daily"]
    distance: float
    created_at: Optional[datetime] = None


class MemoryManager:
    """File-backed agent memory: identity, long-term notes and daily logs"""

    def __init__(self, memory_dir: str, agent_id: str = "default"):
        self.root = Path(memory_dir).expanduser()
        self.agent_id = agent_id
        self._lock = threading.Lock()

    @property
    def daily_dir(self) -> Path:
        return self.root / DAILY_DIR

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""

    def daily_log_path(self, day: Optional[date] = None) -> Path:
        day = day or datetime.now(timezone.utc).date()
        return self.daily_dir / f"{day.isoformat()}.md"

    def load_soul(self) -> str:
        return self._read(self.root / SOUL_FILE)

    def load_long_term_memory(self) -> str:
        return self._read(self.root / LONG_TERM_FILE)

    def load_recent_logs(self, days: int = 2) -> str:
        """Yesterday's and today's daily logs, oldest first"""
        today = datetime.now(timezone.utc).date()
        chunks: List[str] = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            content = self._read(self.daily_log_path(day))
            if content:
                chunks.append(f"## {day.isoformat()}\n\n{content}")
        return "\n\n".join(chunks)

    def load_skills(self) -> str:
        """One line per skill file: its name and first non-empty line"""
        skills_dir = self.root / SKILLS_DIR
        if not skills_dir.is_dir():
            return ""
        lines = []
        for path in sorted(skills_dir.glob("*.md")):
            summary = next(
                (line.strip("# ").strip() for line in self._read(path).splitlines() if line.strip()),
                "",
            )
            lines.append(f"- {path.stem}: {summary}" if summary else f"- {path.stem}")
        return "\n".join(lines)

    def get_memory_context(self) -> MemoryContext:
        return MemoryContext(
            soul=self.load_soul(),
            long_term_memory=self.load_long_term_memory(),
            recent_activity=self.load_recent_logs(),
            skills=self.load_skills(),
        )

    def append_daily_log(self, content: str) -> Path:
        """Append an entry to today's log, creating it if needed"""
        path = self.daily_log_path()
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(f"\n### {stamp}\n\n{content.rstrip()}\n")
        logger.debug("Daily log appended", path=str(path), chars=len(content))
        return path

    def append_long_term(self, content: str) -> Path:
        path = self.root / LONG_TERM_FILE
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(f"\n- {content.strip()}\n")
        logger.info("Long-term memory updated", chars=len(content))
        return path

    def read(self, kind: str) -> str:
        """Read one memory file by kind: soul, long_term or daily"""
        readers: Dict[str, Callable[[], str]] = {
            "soul": self.load_soul,
            "long_term": self.load_long_term_memory,
            "daily": self.load_recent_logs,
        }
        if kind not in readers:
            raise ValueError(f"Unknown memory kind: {kind}")
        return readers[kind]()

    def _entries(self) -> List[MemorySearchResult]:
        """Every long-term bullet and every timestamped daily log entry"""
        entries: List[MemorySearchResult] = []
        for line in self.load_long_term_memory().splitlines():
            text = line.strip().lstrip("-* ").strip()
            if text:
                entries.append(MemorySearchResult(content=text, memory_type="long_term", distance=1.0))

        if not self.daily_dir.is_dir():
            return entries
        for path in sorted(self.daily_dir.glob("*.md")):
            try:
                day = date.fromisoformat(path.stem)
            except ValueError:
                continue
            chunks = DAILY_ENTRY.split(self._read(path))
            # split() yields [preamble, stamp, body, stamp, body, ...]
            for stamp, body in zip(chunks[1::2], chunks[2::2]):
                if body.strip():
                    created_at = datetime.combine(day, datetime.strptime(stamp, "%H:%M:%S").time(), timezone.utc)
                    entries.append(
                        MemorySearchResult(
                            content=body.strip(), memory_type="daily", distance=1.0, created_at=created_at
                        )
                    )
        return entries

    def search(self, query: str, top_k: int = 10) -> List[MemorySearchResult]:
        """Keyword search over memory entries.

        ``distance`` is the share of query words an entry does not contain;
        entries matching none of them are left out.
        """
        terms = set(WORD.findall(query.lower()))
        if not terms:
            return []
        matches = []
        for entry in self._entries():
            words = set(WORD.findall(entry.content.lower()))
            hits = len(terms & words)
            if hits:
                entry.distance = round(1 - hits / len(terms), 4)
                matches.append(entry)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        matches.sort(key=lambda e: (e.distance, -(e.created_at or epoch).timestamp()))
        return matches[:top_k]
