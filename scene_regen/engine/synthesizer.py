from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from scene_regen.core.models import IssueType, QualityIssue, StrategyApproach
from scene_regen.utils.logger import get_logger

logger = get_logger()

MISMATCH_PREFIX = "IMPORTANT: Focus specifically on"

ISSUE_CLAUSES: Dict[IssueType, Tuple[str, ...]] = {
    IssueType.TEXT_OVERLAP: (
        "Leave clear space in the lower third for text overlays.",
        "Position main subjects in the upper portion of the frame.",
    ),
    IssueType.FACE_BLOCKED: (
        "Leave clear space in the lower third for text overlays.",
        "Position main subjects in the upper portion of the frame.",
    ),
    IssueType.POOR_VISIBILITY: (
        "Use high contrast lighting with clean, uncluttered backgrounds.",
        "Ensure good exposure and visibility.",
    ),
    IssueType.BAD_COMPOSITION: (
        "Use professional cinematography with rule of thirds composition.",
        "Create balanced, visually appealing framing.",
    ),
    IssueType.TECHNICAL: (
        "Ensure sharp focus and high video quality.",
        "No artifacts, glitches, or distortions.",
    ),
    IssueType.CONTENT_MISMATCH: (
        "Ensure the visual directly represents the described content.",
    ),
    IssueType.AI_TEXT_DETECTED: (
        "CRITICAL: Generate only visual content with absolutely no text.",
        "Pure visual imagery only, no words or letters.",
    ),
    IssueType.AI_UI_DETECTED: (
        "No user interfaces, no calendars, no charts, no data displays.",
        "Natural scene only, no digital elements.",
    ),
    IssueType.OFF_BRAND_CONTENT: (
        "Wellness and health focused content.",
        "Warm natural aesthetic, no corporate or finance imagery.",
    ),
    IssueType.MISSING_BRAND_ELEMENT: (
        "Keep brand colors present and leave a clean corner for the logo.",
    ),
    IssueType.WRONG_FRAMING: (
        "Match the requested shot framing exactly.",
        "Keep the camera steady on the main subject.",
    ),
    IssueType.MISSING_TEXT_OVERLAY: (
        "Leave clear space in the lower third for text overlays.",
    ),
}

BASELINE_NEGATIVES = (
    "blurry", "low quality", "distorted", "ugly", "deformed",
    "text", "watermark", "logo", "border", "frame",
    "amateur", "unprofessional",
)

TEXT_NEGATIVES = (
    "text", "words", "letters", "writing", "captions", "labels",
    "signage", "typography", "font", "readable text", "gibberish text",
)
UI_NEGATIVES = (
    "user interface", "UI elements", "calendar", "chart", "graph",
    "spreadsheet", "dashboard", "app screen", "digital display",
)
OFF_BRAND_NEGATIVES = (
    "corporate", "finance", "business graphics", "office setting",
    "cold colors", "sterile", "industrial",
)

ISSUE_NEGATIVES: Dict[IssueType, Tuple[str, ...]] = {
    IssueType.POOR_VISIBILITY: ("dark", "underexposed", "overexposed", "low contrast", "shadowy"),
    IssueType.BAD_COMPOSITION: ("cluttered", "busy background", "poorly framed", "off-center"),
    IssueType.TECHNICAL: ("pixelated", "noise", "artifacts", "compression"),
    IssueType.AI_TEXT_DETECTED: TEXT_NEGATIVES,
    IssueType.AI_UI_DETECTED: UI_NEGATIVES,
    IssueType.OFF_BRAND_CONTENT: OFF_BRAND_NEGATIVES,
    IssueType.TEXT_OVERLAP: ("crowded lower third",),
    IssueType.FACE_BLOCKED: ("obstructed face",),
    IssueType.WRONG_FRAMING: ("cropped subject", "tilted horizon"),
}

APPROACH_NEGATIVES: Dict[StrategyApproach, Tuple[str, ...]] = {
    StrategyApproach.ENHANCED_NEGATIVE_PROMPT: TEXT_NEGATIVES,
    StrategyApproach.CONTENT_RESTRICTIONS: UI_NEGATIVES,
    StrategyApproach.BRAND_GUIDANCE: OFF_BRAND_NEGATIVES,
}


@dataclass(frozen=True)
class SynthesizedPrompt:
    prompt: str
    negative_prompt: str


def unique_in_order(items: Iterable[str]) -> List[str]:
    """Case-insensitive dedup, first spelling wins."""
    seen = set()
    out = []
    for item in items:
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(item.strip())
    return out


def truncate_terms(terms: Sequence[str], max_length: int) -> str:
    """Join terms with ', ' without exceeding max_length or cutting a word in half."""
    kept: List[str] = []
    length = 0
    for term in terms:
        extra = len(term) + (2 if kept else 0)
        if length + extra > max_length:
            break
        kept.append(term)
        length += extra

    if not kept and terms:
        words: List[str] = []
        for word in terms[0].split():
            if len(" ".join(words + [word])) > max_length:
                break
            words.append(word)
        return " ".join(words)

    return ", ".join(kept)


class PromptSynthesizer:
    """
    Turns a base prompt, observed issues and the chosen approach into the
    next prompt and negative prompt.

    Re-synthesizing an already improved prompt is a no-op: clauses already
    present are skipped and the mismatch prefix is applied once.
    """

    def __init__(self, negative_max_length: int = 500):
        self.negative_max_length = negative_max_length

    def synthesize(
        self,
        base_prompt: str,
        issues: Iterable[QualityIssue],
        approach: Optional[StrategyApproach] = None,
        extra_clauses: Iterable[str] = (),
    ) -> SynthesizedPrompt:
        issues = list(issues)
        return SynthesizedPrompt(
            prompt=self.improve_prompt(base_prompt, issues, extra_clauses),
            negative_prompt=self.build_negative_prompt(issues, approach),
        )

    def improve_prompt(
        self,
        base_prompt: str,
        issues: Iterable[QualityIssue],
        extra_clauses: Iterable[str] = (),
    ) -> str:
        base = base_prompt.rstrip()
        issue_types = self._issue_types(issues)

        improved = base
        if IssueType.CONTENT_MISMATCH in issue_types and MISMATCH_PREFIX.lower() not in base.lower():
            improved = f"{MISMATCH_PREFIX} {base.rstrip('.')}."

        clauses: List[str] = []
        for issue_type in issue_types:
            clauses.extend(ISSUE_CLAUSES[issue_type])
        clauses.extend(extra_clauses)

        present = improved.lower()
        additions = [c for c in unique_in_order(clauses) if c.lower() not in present]

        if additions:
            improved = f"{improved} {' '.join(additions)}"
            logger.debug(f"✏️ Added {len(additions)} prompt clause(s)")
        return improved

    def build_negative_prompt(
        self,
        issues: Iterable[QualityIssue],
        approach: Optional[StrategyApproach] = None,
    ) -> str:
        terms: List[str] = list(BASELINE_NEGATIVES)
        for issue_type in self._issue_types(issues):
            terms.extend(ISSUE_NEGATIVES.get(issue_type, ()))
        if approach is not None:
            terms.extend(APPROACH_NEGATIVES.get(approach, ()))
        return truncate_terms(unique_in_order(terms), self.negative_max_length)

    @staticmethod
    def _issue_types(issues: Iterable[QualityIssue]) -> List[IssueType]:
        types: List[IssueType] = []
        for issue in issues:
            if issue.type not in types:
                types.append(issue.type)
        return types
