"""Parse ``git diff`` output into per-file patches and change statistics."""

import re
from typing import List, NamedTuple

from pydantic import BaseModel, Field

_DIFF_HEADER = re.compile(r"^diff --git a/(.*) b/(.*)$")
_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class Hunk(BaseModel):
    """One ``@@`` section of a file patch."""

    old_start: int
    new_start: int
    header: str
    lines: List[str] = Field(default_factory=list)


class FilePatch(BaseModel):
    """Changes to a single file."""

    old_path: str | None
    new_path: str | None
    status: str = "modified"
    binary: bool = False
    header: List[str] = Field(default_factory=list)
    hunks: List[Hunk] = Field(default_factory=list)

    @property
    def path(self) -> str:
        return self.new_path or self.old_path or ""

    def stats(self) -> "DiffStats":
        ins = dels = mods = 0
        for hunk in self.hunks:
            removed = added = 0
            for line in hunk.lines + [" "]:
                if line.startswith("-"):
                    removed += 1
                elif line.startswith("+"):
                    added += 1
                elif line.startswith("\\"):
                    continue
                else:
                    # A block of removals followed by additions counts as modifications
                    m = min(removed, added)
                    mods += m
                    dels += removed - m
                    ins += added - m
                    removed = added = 0
        return DiffStats(files=1, insertions=ins, deletions=dels, modifications=mods)

    def text(self) -> str:
        """Patch text of this file, as it appeared in the diff."""
        out = list(self.header)
        for hunk in self.hunks:
            out.append(hunk.header)
            out.extend(hunk.lines)
        return "\n".join(out) + "\n"


class DiffStats(NamedTuple):
    files: int = 0
    insertions: int = 0
    deletions: int = 0
    modifications: int = 0

    @property
    def lines(self) -> int:
        return self.insertions + self.deletions + self.modifications

    def __add__(self, other: "DiffStats") -> "DiffStats":
        return DiffStats(*(a + b for a, b in zip(self, other)))

    def summary(self) -> str:
        """E.g. ``3 lines in 2 files changed: 1 ins; 1 del; 1 mod``."""
        return (
            f"{self.lines} line{'' if self.lines == 1 else 's'} in "
            f"{self.files} file{'' if self.files == 1 else 's'} changed: "
            f"{self.insertions} ins; {self.deletions} del; {self.modifications} mod"
        )


def _strip_prefix(path: str) -> str | None:
    if path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def parse_diff(text: str) -> List[FilePatch]:
    """Split unified ``git diff`` output into FilePatch objects."""
    patches: List[FilePatch] = []
    current: FilePatch | None = None
    hunk: Hunk | None = None
    for line in text.split("\n"):
        m = _DIFF_HEADER.match(line)
        if m:
            current = FilePatch(old_path=m.group(1), new_path=m.group(2), header=[line])
            patches.append(current)
            hunk = None
            continue
        if current is None:
            continue
        hm = _HUNK_HEADER.match(line)
        if hm:
            hunk = Hunk(old_start=int(hm.group(1)), new_start=int(hm.group(3)), header=line)
            current.hunks.append(hunk)
        elif hunk is None:
            current.header.append(line)
            if line.startswith("new file mode"):
                current.status = "added"
            elif line.startswith("deleted file mode"):
                current.status = "deleted"
            elif line.startswith("rename from "):
                current.status = "renamed"
                current.old_path = line[len("rename from "):]
            elif line.startswith("rename to "):
                current.new_path = line[len("rename to "):]
            elif line.startswith("Binary files") or line.startswith("GIT binary patch"):
                current.binary = True
            elif line.startswith("--- "):
                current.old_path = _strip_prefix(line[4:])
            elif line.startswith("+++ "):
                current.new_path = _strip_prefix(line[4:])
        elif line[:1] in ("+", "-", " ", "\\"):
            hunk.lines.append(line)
    return patches


def diff_stats(patches: List[FilePatch]) -> DiffStats:
    total = DiffStats()
    for patch in patches:
        total = total + patch.stats()
    return total
