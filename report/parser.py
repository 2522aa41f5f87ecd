"""
report/parser.py — Interpretation text → typed report blocks
=============================================================
The interpretation service (and the local fallback) answer in a small,
line-oriented markdown dialect:

    ### REPORT_STATUS: STABLE
    **Summary:** One sentence.
    **Clinical Findings:**
    *   [BPM: 72] - Normal resting rate.
    *   [BP: 118/78] - Within range.
    **AI Verdict:** Ten word summary.

Each non-blank line becomes exactly one block.  Rules are tried in a fixed
order and the first match wins:

    1. status heading   → StatusBanner
    2. metric tags      → FindingLine
    3. verdict marker   → VerdictBlock
    4. bold / heading   → Heading
    5. anything else    → PlainLine

Blank lines produce nothing.
"""

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Union


class BlockKind(str, Enum):
    STATUS = "status"
    FINDING = "finding"
    VERDICT = "verdict"
    HEADING = "heading"
    PLAIN = "plain"


class MetricKind(str, Enum):
    HR = "HR"
    BP = "BP"
    HRV = "HRV"


class Severity(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class MetricTag:
    kind: MetricKind
    value: str


Segment = Union[PlainText, MetricTag]


@dataclass(frozen=True)
class StatusBanner:
    status: str
    severity: Severity
    kind: BlockKind = BlockKind.STATUS


@dataclass(frozen=True)
class FindingLine:
    segments: tuple
    kind: BlockKind = BlockKind.FINDING


@dataclass(frozen=True)
class VerdictBlock:
    text: str
    kind: BlockKind = BlockKind.VERDICT


@dataclass(frozen=True)
class Heading:
    text: str
    kind: BlockKind = BlockKind.HEADING


@dataclass(frozen=True)
class PlainLine:
    text: str
    kind: BlockKind = BlockKind.PLAIN


ReportBlock = Union[StatusBanner, FindingLine, VerdictBlock, Heading, PlainLine]


# ── Grammar ──────────────────────────────────────────────────────────────────

STATUS_MARKER = "###"
VERDICT_MARKER = "**AI Verdict:**"
STATUS_KEYWORDS = ("REPORT_STATUS", "OPTIMAL", "STABLE", "ATTENTION", "ELEVATED")
POSITIVE_STATUSES = ("OPTIMAL", "STABLE")

# Tag prefix → metric kind.  "[BPM:" must be checked before "[BP:".
TAG_PREFIXES = (
    ("[BPM:", MetricKind.HR),
    ("[BP:", MetricKind.BP),
    ("[HRV:", MetricKind.HRV),
)

_BRACKET_SPLIT = re.compile(r"(\[.*?\])")
_STATUS_LABEL = re.compile(r"\[?REPORT_STATUS\]?\s*:?")


def _strip_emphasis(text: str) -> str:
    return text.replace("*", "")


def _is_status(line: str) -> bool:
    return line.startswith(STATUS_MARKER) and any(k in line for k in STATUS_KEYWORDS)


def _has_metric_tag(line: str) -> bool:
    return any(prefix in line for prefix, _ in TAG_PREFIXES)


def _parse_status(line: str) -> StatusBanner:
    status = _STATUS_LABEL.sub("", line.replace(STATUS_MARKER, "")).strip()
    positive = any(word in status for word in POSITIVE_STATUSES)
    return StatusBanner(status=status, severity=Severity.POSITIVE if positive else Severity.NEGATIVE)


def _parse_finding(line: str) -> FindingLine:
    segments: list[Segment] = []
    for part in _BRACKET_SPLIT.split(line):
        for prefix, kind in TAG_PREFIXES:
            if part.startswith(prefix):
                value = part[len(prefix):].rstrip("]").strip()
                segments.append(MetricTag(kind=kind, value=value))
                break
        else:
            text = _strip_emphasis(part)
            if text.strip():
                segments.append(PlainText(text=text))
    return FindingLine(segments=tuple(segments))


def parse_line(line: str) -> ReportBlock | None:
    """Classify a single line; returns None for blank lines."""
    stripped = line.strip()
    if not stripped:
        return None
    if _is_status(stripped):
        return _parse_status(stripped)
    if _has_metric_tag(stripped):
        return _parse_finding(stripped)
    if stripped.startswith(VERDICT_MARKER):
        return VerdictBlock(text=_strip_emphasis(stripped[len(VERDICT_MARKER):]).strip())
    if stripped.startswith("**") or stripped.startswith("#"):
        return Heading(text=_strip_emphasis(stripped).lstrip("#").strip())
    return PlainLine(text=_strip_emphasis(stripped).strip())


def parse_report(text: str) -> list[ReportBlock]:
    """Parse interpretation text into blocks, preserving line order."""
    blocks = []
    for line in (text or "").splitlines():
        block = parse_line(line)
        if block is not None:
            blocks.append(block)
    return blocks


# ── Output helpers ───────────────────────────────────────────────────────────


def to_dict(block: ReportBlock) -> dict:
    """JSON-friendly form of a block (enums flattened to their values)."""
    data = asdict(block)
    data["kind"] = block.kind.value
    if isinstance(block, StatusBanner):
        data["severity"] = block.severity.value
    if isinstance(block, FindingLine):
        data["segments"] = [
            {"type": "metric", "kind": s.kind.value, "value": s.value}
            if isinstance(s, MetricTag)
            else {"type": "text", "text": s.text}
            for s in block.segments
        ]
    return data


def render_plain(blocks: list[ReportBlock]) -> str:
    """Render blocks as plain terminal text (used by the CLI demo)."""
    lines = []
    for block in blocks:
        if isinstance(block, StatusBanner):
            lines.append(f"[ VITAL STATUS: {block.status} ]")
        elif isinstance(block, FindingLine):
            parts = [
                f"<{s.kind.value}: {s.value}>" if isinstance(s, MetricTag) else s.text
                for s in block.segments
            ]
            lines.append("  " + "".join(parts).strip())
        elif isinstance(block, VerdictBlock):
            lines.append(f'FINAL VERDICT: "{block.text}"')
        elif isinstance(block, Heading):
            lines.append(block.text.upper())
        else:
            lines.append("  " + block.text)
    return "\n".join(lines)
