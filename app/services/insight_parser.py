"""
Response parser for insight completions

Turns the free-text completion produced by a generation backend into the
structured pieces of an Insight. The text is walked line by line, tracking
which output section (see app.services.insight_prompts) is current; each
section is then parsed on its own. Any section that is missing or cannot be
read falls back to a default, so parse() always returns a complete result.
"""
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from app.models.insight import InsightType, InsightPriority
from app.services.insight_prompts import (
    OUTPUT_SECTIONS,
    SECTION_TITLE,
    SECTION_SUMMARY,
    SECTION_PRIORITY,
    SECTION_METRICS,
    SECTION_RECOMMENDATIONS,
    SECTION_VISUALIZATIONS,
)
from app.utils.logger import log


DEFAULT_SUMMARY = "An insight was generated but could not be fully parsed."
FALLBACK_METRIC_NAME = "Metric"
TITLE_TRUNCATE_AT = 40

# Header line: optional markdown decoration or numbering, the heading, optional colon, inline text
_HEADER_RE = re.compile(
    r"^\s*(?:#{1,6}\s*)?(?:[-*•]\s+)?(?:\d+[.)]\s+)?\**\s*("
    + "|".join(re.escape(s) for s in sorted(OUTPUT_SECTIONS, key=len, reverse=True))
    + r")\s*\**\s*(?::\s*\**\s*(?P<inline>.*))?$",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_SYMBOL_BULLET_RE = re.compile(r"^\s*[-*•]\s+")
_NUMBER_RE = re.compile(r"[-+]?\d[\d,]*(?:\.\d+)?")
_PERCENT_RE = re.compile(r"([-+]?\d[\d,]*(?:\.\d+)?)\s*%")
_PRIORITY_NOTE_RE = re.compile(r"\(\s*(\w+)\s+priority\s*\)", re.IGNORECASE)
_NAME_VALUE_RE = re.compile(r"^(.*?):\s*(.*)$", re.DOTALL)
_UP_RE = re.compile(r"\bup\b|\bincreas", re.IGNORECASE)
_DOWN_RE = re.compile(r"\bdown\b|\bdecreas", re.IGNORECASE)
_VS_RE = re.compile(r"\bvs\b", re.IGNORECASE)

_CANONICAL_SECTIONS = {s.lower(): s for s in OUTPUT_SECTIONS}
_LIST_SECTIONS = {SECTION_METRICS, SECTION_RECOMMENDATIONS, SECTION_VISUALIZATIONS}


@dataclass
class Metric:
    name: str
    value: float = 0.0
    change: Optional[float] = None
    change_direction: str = "stable"  # up, down, stable
    description: str = ""


@dataclass
class Recommendation:
    title: str
    description: str
    priority: str = InsightPriority.MEDIUM.value


@dataclass
class VisualizationSuggestion:
    type: str  # chart, table, indicator, comparison
    title: str
    description: str = ""


@dataclass
class ParsedInsight:
    title: str
    summary: str
    priority: InsightPriority = InsightPriority.MEDIUM
    metrics: List[Metric] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    visualizations: List[VisualizationSuggestion] = field(default_factory=list)

    def to_update(self) -> Dict:
        """Field values for InsightRepository.update_insight"""
        return {
            "title": self.title,
            "summary": self.summary,
            "priority": self.priority.value,
            "metrics": [asdict(m) for m in self.metrics],
            "recommendations": [asdict(r) for r in self.recommendations],
            "visualizations": [asdict(v) for v in self.visualizations],
        }


def default_title(insight_type) -> str:
    try:
        return f"{InsightType(insight_type).label} Insight"
    except ValueError:
        return "Business Insight"


def map_priority(value: Optional[str]) -> InsightPriority:
    """Case-insensitive priority lookup; anything unrecognised is MEDIUM"""
    if not value:
        return InsightPriority.MEDIUM
    try:
        return InsightPriority(value.strip().lower())
    except ValueError:
        return InsightPriority.MEDIUM


def determine_visualization_type(text: str) -> str:
    lowered = text.lower()
    if "table" in lowered or "grid" in lowered:
        return "table"
    if "comparison" in lowered or "versus" in lowered or _VS_RE.search(lowered):
        return "comparison"
    if "indicator" in lowered or "gauge" in lowered or "meter" in lowered:
        return "indicator"
    return "chart"


def _to_float(raw: str) -> Optional[float]:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def _clean(text: str) -> str:
    return text.strip().strip("*").strip()


# ────────────────────────────────────────────
# Section splitting
# ────────────────────────────────────────────


def split_sections(text: str) -> Dict[str, List[str]]:
    """
    Walk the completion line by line and bucket lines under their section.

    Lines before the first recognised header are dropped. A repeated header
    is kept as an ordinary line of the current section, so the first
    occurrence of each section wins. Inside a list section a dash or star
    item is always an item, even when it reads like a header.
    """
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None

    for line in text.splitlines():
        match = _HEADER_RE.match(line)
        if match and current in _LIST_SECTIONS and _SYMBOL_BULLET_RE.match(line):
            match = None
        if match:
            name = _CANONICAL_SECTIONS[match.group(1).lower()]
            if name not in sections:
                current = name
                sections[current] = []
                inline = match.group("inline")
                if inline and inline.strip():
                    sections[current].append(inline.strip())
                continue

        if current is not None:
            sections[current].append(line.rstrip())

    # Trailing blank lines belong to the gap before the next header
    for lines in sections.values():
        while lines and not lines[-1].strip():
            lines.pop()

    return sections


def split_items(lines: List[str]) -> List[str]:
    """
    Split a section block into list items.

    A bulleted or numbered line starts a new item; an unmarked line continues
    the previous item (or starts the first one).
    """
    items: List[str] = []
    for line in lines:
        if not line.strip():
            continue
        marker = _BULLET_RE.match(line)
        if marker:
            items.append(line[marker.end():].strip())
        elif items:
            items[-1] = f"{items[-1]} {line.strip()}"
        else:
            items.append(line.strip())
    return [item for item in items if item]


# ────────────────────────────────────────────
# Per-section parsers
# ────────────────────────────────────────────


def parse_title(lines: List[str]) -> Optional[str]:
    for line in lines:
        title = _clean(line).strip('"').strip()
        if title:
            return title
    return None


def parse_summary(lines: List[str]) -> Optional[str]:
    summary = " ".join(line.strip() for line in lines if line.strip())
    return summary or None


def parse_priority(lines: List[str]) -> InsightPriority:
    text = " ".join(lines)
    match = re.match(r"\W*(\w+)", text)
    return map_priority(match.group(1) if match else None)


def parse_metric(line: str) -> Metric:
    split = _NAME_VALUE_RE.match(line)
    if not split or not _clean(split.group(1)):
        return Metric(name=FALLBACK_METRIC_NAME, value=0.0, description=line.strip())

    name = _clean(split.group(1))
    description = split.group(2).strip()

    value_match = _NUMBER_RE.search(description)
    value = _to_float(value_match.group(0)) if value_match else None

    change_match = _PERCENT_RE.search(description)
    change = _to_float(change_match.group(1)) if change_match else None

    if change is not None:
        direction = "up" if change > 0 else "down" if change < 0 else "stable"
    elif _UP_RE.search(description):
        direction = "up"
    elif _DOWN_RE.search(description):
        direction = "down"
    else:
        direction = "stable"

    return Metric(
        name=name,
        value=value if value is not None else 0.0,
        change=change,
        change_direction=direction,
        description=description,
    )


def parse_recommendation(line: str) -> Recommendation:
    note = _PRIORITY_NOTE_RE.search(line)
    priority = map_priority(note.group(1)) if note else InsightPriority.MEDIUM
    text = _PRIORITY_NOTE_RE.sub("", line).strip()
    text = re.sub(r"\s{2,}", " ", text)

    split = _NAME_VALUE_RE.match(text)
    if split and _clean(split.group(1)):
        return Recommendation(
            title=_clean(split.group(1)),
            description=split.group(2).strip(),
            priority=priority.value,
        )

    title = text if len(text) <= TITLE_TRUNCATE_AT else text[:TITLE_TRUNCATE_AT] + "..."
    return Recommendation(title=title, description=text, priority=priority.value)


def parse_visualization(line: str) -> VisualizationSuggestion:
    split = _NAME_VALUE_RE.match(line)
    if split and _clean(split.group(1)):
        title = _clean(split.group(1))
        return VisualizationSuggestion(
            type=determine_visualization_type(title),
            title=title,
            description=split.group(2).strip(),
        )
    return VisualizationSuggestion(
        type=determine_visualization_type(line),
        title=_clean(line),
        description="",
    )


def default_insight(insight_type) -> ParsedInsight:
    return ParsedInsight(
        title=default_title(insight_type),
        summary=DEFAULT_SUMMARY,
        priority=InsightPriority.MEDIUM,
    )


def parse(completion: Optional[str], insight_type) -> ParsedInsight:
    """
    Parse a backend completion into insight fields.

    Never raises: sections that are absent or unreadable are replaced by the
    category defaults.
    """
    result = default_insight(insight_type)
    if not completion:
        log.warning(f"Empty completion for {result.title}; using defaults")
        return result

    try:
        sections = split_sections(completion)
    except Exception as e:
        log.warning(f"Could not split completion into sections: {str(e)}")
        return result

    missing = [s for s in (SECTION_TITLE, SECTION_SUMMARY, SECTION_PRIORITY) if s not in sections]
    if missing:
        log.warning(f"Completion missing sections {missing}; defaults substituted")

    try:
        title = parse_title(sections.get(SECTION_TITLE, []))
        if title:
            result.title = title
    except Exception as e:
        log.warning(f"Title parse failed: {str(e)}")

    try:
        summary = parse_summary(sections.get(SECTION_SUMMARY, []))
        if summary:
            result.summary = summary
    except Exception as e:
        log.warning(f"Summary parse failed: {str(e)}")

    try:
        result.priority = parse_priority(sections.get(SECTION_PRIORITY, []))
    except Exception as e:
        log.warning(f"Priority parse failed: {str(e)}")

    try:
        result.metrics = [parse_metric(item) for item in split_items(sections.get(SECTION_METRICS, []))]
    except Exception as e:
        log.warning(f"Metrics parse failed: {str(e)}")
        result.metrics = []

    try:
        result.recommendations = [
            parse_recommendation(item)
            for item in split_items(sections.get(SECTION_RECOMMENDATIONS, []))
        ]
    except Exception as e:
        log.warning(f"Recommendations parse failed: {str(e)}")
        result.recommendations = []

    try:
        result.visualizations = [
            parse_visualization(item)
            for item in split_items(sections.get(SECTION_VISUALIZATIONS, []))
        ]
    except Exception as e:
        log.warning(f"Visualization parse failed: {str(e)}")
        result.visualizations = []

    return result
