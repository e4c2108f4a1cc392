"""IP list loading.

Reads the line-oriented allow/deny list:

    # office
    203.0.113.7
    10.20.0.0/16

Blank lines and ``#`` comments are skipped, surrounding whitespace is
trimmed, malformed entries are reported and dropped. A missing or empty
file is not an error: the chain is still built, just without entries.
"""

from dataclasses import dataclass, field
from pathlib import Path

from chainguard.core.exceptions import ValidationError
from chainguard.core.output import Console
from chainguard.core.validation import validate_ipv4_entry


COMMENT_MARKER = "#"


@dataclass
class RejectedLine:
    """A list line that failed validation."""
    line_number: int
    text: str
    reason: str


@dataclass
class IPList:
    """Validated, de-duplicated list entries in the order they are written.

    Attributes:
        path: File the list came from
        entries: Unique valid entries, sort-unique ordered
        rejected: Lines dropped by validation
        duplicates: Number of repeated valid entries collapsed
        found: Whether the file existed
    """
    path: Path
    entries: list[str] = field(default_factory=list)
    rejected: list[RejectedLine] = field(default_factory=list)
    duplicates: int = 0
    found: bool = True

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries


def parse_ip_lines(lines: list[str], path: Path, console: Console) -> IPList:
    """Validate and de-duplicate raw list lines.

    Args:
        lines: Raw file lines
        path: Source path (for messages)
        console: Console for per-entry messages

    Returns:
        IPList with sorted unique entries
    """
    result = IPList(path=path)
    seen: set[str] = set()

    for number, raw in enumerate(lines, start=1):
        candidate = raw.strip()
        if not candidate or candidate.startswith(COMMENT_MARKER):
            continue

        try:
            entry = validate_ipv4_entry(candidate)
        except ValidationError as e:
            console.error(f"{e.message} (line {number})")
            result.rejected.append(RejectedLine(number, candidate, e.message))
            continue

        if entry in seen:
            result.duplicates += 1
            continue

        seen.add(entry)
        console.debug(f"Added IP: {entry}")

    # sort -u ordering keeps the chain layout stable between runs
    result.entries = sorted(seen)
    return result


def load_ip_list(path: Path, console: Console) -> IPList:
    """Load the IP list file.

    Args:
        path: List file (UTF-8, one entry per line)
        console: Console for progress and per-entry messages

    Returns:
        IPList (empty with a warning if the file is missing or empty)
    """
    if not path.is_file():
        console.warn(f"IP list file not found: {path}")
        return IPList(path=path, found=False)

    try:
        data = path.read_bytes()
    except OSError as e:
        console.warn(f"Cannot read IP list file {path}: {e}")
        return IPList(path=path, found=False)

    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError:
        # Undecodable bytes become U+FFFD and fail validation on their own line
        console.warn(f"IP list file {path} is not valid UTF-8; affected lines are skipped")
        content = data.decode("utf-8", errors="replace")

    if not content.strip():
        console.warn(f"IP list file is empty: {path}")
        return IPList(path=path)

    console.step(f"Loading IP list from {path}")
    ip_list = parse_ip_lines(content.splitlines(), path, console)

    console.info(f"Loaded {len(ip_list)} valid IP entries")
    if ip_list.duplicates:
        console.verbose(f"Collapsed {ip_list.duplicates} duplicate entries")
    if ip_list.rejected:
        console.warn(f"Skipped {len(ip_list.rejected)} invalid entries")

    return ip_list
