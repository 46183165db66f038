"""Turns free-form model replies into normalized answers.

Every provider ends up here with plain text. The classifier decides between a
code answer, a multiple-choice pick and plain analysis, and pulls structured
fields out of labeled sections. Apart from ``parse_problem`` (strict JSON
stage) nothing in this module raises on odd input: missing structure falls
back to showing the prose.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .llm.types import MalformedUpstream
from .models import (
    ANSWER_ANALYSIS,
    ANSWER_CODE,
    NOT_AVAILABLE,
    DebugAnalysis,
    NormalizedAnswer,
    ProblemContext,
)
from .utils import BULLET_RE, find_json_payload, to_bullet_list

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```([\w+#.-]*)[ \t]*\r?\n(.*?)```", re.DOTALL)

CN_CHOICE_RE = re.compile(
    r"(?:最终答案|正确答案|答案)\s*(?:是|为)?\s*[:：]?\s*[(\[（【]?\s*([A-Da-d])(?![A-Za-z])"
)
EN_CHOICE_RE = re.compile(
    r"(?i:\b(?:final\s+answer|correct\s+answer|answer))\s*(?:[:：]|(?i:is))\s*"
    r"(?i:option\s+)?[(\[]?\s*([A-D]|(?:(?<=[:：(\[])|(?<=[:：] ))[a-d])(?![A-Za-z0-9])"
)
SOLO_LETTER_RE = re.compile(r"^[A-D]$")

BIG_O_RE = re.compile(r"O\([^)]+\)", re.IGNORECASE)

SECTION_LABELS: Dict[str, str] = {
    "code": r"code|solution",
    "thoughts": r"(?:your\s+)?thoughts|key\s+insights|reasoning|approach",
    "time_complexity": r"time\s+complexity",
    "space_complexity": r"space\s+complexity",
}
_LABEL_RE = re.compile(
    r"^[ \t]*(?P<hdr>#{1,6}[ \t]*)?(?:\d+[.)][ \t]*)?(?:\*\*|__)?"
    r"(?P<label>" + "|".join(f"(?P<{name}>{pattern})" for name, pattern in SECTION_LABELS.items()) + r")"
    r"(?:\*\*|__)?[ \t]*(?P<colon>[:：])?(?:\*\*|__)?[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
_HEADER_RE = re.compile(r"^[ \t]*#{1,6}[ \t]*(?P<title>.+?)[ \t#]*$", re.MULTILINE)

DEFAULT_CODE_THOUGHTS = ["依据题意给出可运行实现"]
DEFAULT_SOLUTION_THOUGHTS = ["Solution approach based on efficiency and readability"]
DEFAULT_REASONING_THOUGHTS = ["Reasoning steps derived from the model response."]
DEFAULT_DEBUG_THOUGHTS = ["Debug analysis based on your screenshots"]
DEBUG_CODE_PLACEHOLDER = "// Debug mode - see analysis below"
MISSING_COMPLEXITY = "Not stated in the response"
NOT_CODING_COMPLEXITY = "N/A - Not a coding task"

DEBUG_SECTIONS: List[Tuple[str, str, str]] = [
    ("issues", "Issues Identified", r"issues?|problems?\s+found|bugs?|errors?"),
    ("improvements", "Specific Improvements and Corrections", r"improvements?|corrections?|suggested\s+changes|fix(?:es)?"),
    ("optimizations", "Optimizations", r"optimi[sz]ations?|performance"),
    ("explanation", "Explanation of Changes Needed", r"explanation|explain|detailed\s+analysis"),
    ("key_points", "Key Points", r"key\s+points?|takeaways?|summary"),
]


@dataclass
class _Fence:
    start: int
    end: int
    language: str
    body: str


def _normalize(text: Optional[str]) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def _fences(text: str) -> List[_Fence]:
    return [
        _Fence(m.start(), m.end(), m.group(1), m.group(2))
        for m in FENCE_RE.finditer(text)
    ]


def first_code_block(text: str) -> Optional[_Fence]:
    for fence in _fences(text):
        if fence.body.strip():
            return fence
    return None


def find_choice(text: str) -> Optional[str]:
    """Multiple-choice letter from a final-answer label or a bare-letter line."""
    for pattern in (CN_CHOICE_RE, EN_CHOICE_RE):
        match = pattern.search(text)
        if match:
            return match.group(1).upper()
    for line in text.splitlines():
        if SOLO_LETTER_RE.match(line.strip()):
            return line.strip()
    return None


def labeled_sections(text: str) -> Dict[str, str]:
    """Text following each known label, up to the next label or code fence.

    Labels inside fences are ignored. Only the first occurrence of a label
    counts.
    """
    fences = _fences(text)

    def inside_fence(pos: int) -> bool:
        return any(f.start <= pos < f.end for f in fences)

    anchors: List[Tuple[str, int, int]] = []
    for match in _LABEL_RE.finditer(text):
        if inside_fence(match.start()):
            continue
        line_end = text.find("\n", match.end())
        rest_of_line = text[match.end() : line_end if line_end != -1 else len(text)]
        name = next(key for key in SECTION_LABELS if match.group(key))
        explicit = match.group("hdr") or match.group("colon") or not rest_of_line.strip()
        # "Time complexity O(n)" needs no colon.
        if not (explicit or (name.endswith("complexity") and "O(" in rest_of_line)):
            continue
        anchors.append((name, match.start(), match.end()))

    boundaries = sorted([start for _, start, _ in anchors] + [f.start for f in fences])
    sections: Dict[str, str] = {}
    for name, _, body_start in anchors:
        if name in sections:
            continue
        body_end = next((b for b in boundaries if b >= body_start), len(text))
        sections[name] = text[body_start:body_end].strip()
    return sections


def normalize_complexity(text: Optional[str]) -> Optional[str]:
    """Applies the Big-O template: ``O(x) - explanation``.

    Explanations without notation get an ``O(n)`` prefix; bare notation
    followed by text gets a separator.
    """
    if not text:
        return None
    paragraph = text.strip().split("\n\n", 1)[0]
    value = " ".join(paragraph.split())
    if not value:
        return None
    notation = BIG_O_RE.search(value)
    if not notation:
        return f"O(n) - {value}"
    if "-" in value or "because" in value.lower():
        return value
    rest = (value[: notation.start()] + value[notation.end() :]).strip().lstrip(",;:.").strip()
    return f"{notation.group(0)} - {rest}" if rest else notation.group(0)


def _markdown_section(text: str, title: str) -> Optional[str]:
    match = re.search(
        rf"^[ \t]*#{{1,6}}[ \t]*{title}[ \t]*:?[ \t]*$(.*?)(?=^[ \t]*#{{1,6}}[ \t]|\Z)",
        text,
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )
    return match.group(1).strip() if match else None


class AnswerClassifier:
    def __init__(self, preferred_language: str = "python") -> None:
        self.preferred_language = preferred_language

    def classify(self, text: str, preferred_language: Optional[str] = None) -> NormalizedAnswer:
        """Single-shot classification: code block, then letter choice, then prose."""
        language = preferred_language or self.preferred_language
        normalized = _normalize(text)

        fence = first_code_block(normalized)
        if fence is not None:
            code = fence.body.strip()
            sections = labeled_sections(normalized)
            thoughts = to_bullet_list(sections.get("thoughts"))
            return NormalizedAnswer(
                answer_type=ANSWER_CODE,
                content=code,
                code=code,
                thoughts=thoughts or list(DEFAULT_CODE_THOUGHTS),
                time_complexity=normalize_complexity(sections.get("time_complexity")),
                space_complexity=normalize_complexity(sections.get("space_complexity")),
                question_type="coding",
                language=fence.language or language,
            )

        letter = find_choice(normalized)
        if letter is not None:
            return NormalizedAnswer(
                answer_type=ANSWER_ANALYSIS,
                content=normalized,
                key_takeaways=[f"正确选项：{letter}"],
                chosen_letter=letter,
                question_type="multiple_choice",
            )

        return NormalizedAnswer(answer_type=ANSWER_ANALYSIS, content=normalized, question_type="other")

    def parse_problem(self, text: str, preferred_language: Optional[str] = None) -> ProblemContext:
        """First stage of the two-stage protocol: strict JSON problem description."""
        payload = find_json_payload(text)
        if isinstance(payload, list):
            payload = next((item for item in payload if isinstance(item, dict)), None)
        if not isinstance(payload, dict):
            logger.error("Problem extraction returned no parseable JSON (%d chars)", len(text or ""))
            raise MalformedUpstream("no balanced JSON object in extraction reply", MalformedUpstream.default_message)
        return ProblemContext.from_dict(payload, language=preferred_language or self.preferred_language)

    def parse_solution(
        self,
        text: str,
        problem: ProblemContext,
        preferred_language: Optional[str] = None,
    ) -> NormalizedAnswer:
        """Second stage: labeled sections for coding tasks, markdown headings otherwise."""
        normalized = _normalize(text)
        if not normalized:
            return self.classify(normalized, preferred_language)
        if problem.is_coding:
            return self._coding_solution(normalized, problem, preferred_language)
        return self._general_solution(normalized, problem)

    def _coding_solution(
        self,
        text: str,
        problem: ProblemContext,
        preferred_language: Optional[str],
    ) -> NormalizedAnswer:
        fence = first_code_block(text)
        code = fence.body.strip() if fence else text
        sections = labeled_sections(text)
        thoughts = to_bullet_list(sections.get("thoughts"))
        time_complexity = normalize_complexity(sections.get("time_complexity"))
        space_complexity = normalize_complexity(sections.get("space_complexity"))
        language = preferred_language or self.preferred_language
        if problem.language_hint not in ("", NOT_AVAILABLE):
            language = problem.language_hint
        return NormalizedAnswer(
            answer_type=ANSWER_CODE,
            content=code,
            code=code,
            thoughts=thoughts or list(DEFAULT_SOLUTION_THOUGHTS),
            time_complexity=time_complexity or f"O(n) - {MISSING_COMPLEXITY}",
            space_complexity=space_complexity or f"O(n) - {MISSING_COMPLEXITY}",
            question_type=problem.readable_type,
            language=(fence.language if fence and fence.language else language),
        )

    def _general_solution(self, text: str, problem: ProblemContext) -> NormalizedAnswer:
        final_answer = _markdown_section(text, r"Final\s+Answer")
        reasoning = to_bullet_list(_markdown_section(text, r"Reasoning\s+Steps"))
        takeaways = to_bullet_list(_markdown_section(text, r"Key\s+Takeaways"))
        return NormalizedAnswer(
            answer_type=ANSWER_ANALYSIS,
            content=text,
            thoughts=reasoning or list(DEFAULT_REASONING_THOUGHTS),
            time_complexity=NOT_CODING_COMPLEXITY,
            space_complexity=NOT_CODING_COMPLEXITY,
            key_takeaways=takeaways or None,
            chosen_letter=find_choice(final_answer) if final_answer else None,
            question_type=problem.readable_type,
        )

    def parse_debug(self, text: str) -> DebugAnalysis:
        """Debug replies: five fixed headers, relabelled from keywords when absent."""
        normalized = _normalize(text)
        fence = first_code_block(normalized)
        code = fence.body.strip() if fence else DEBUG_CODE_PLACEHOLDER

        formatted = normalized
        if "# " not in normalized and "## " not in normalized:
            formatted = relabel_debug_paragraphs(normalized)

        sections = debug_sections(formatted)
        bullets: List[str] = []
        masked = FENCE_RE.sub("", formatted)
        for line in masked.splitlines():
            stripped = line.strip()
            if BULLET_RE.match(stripped):
                bullets.append(BULLET_RE.sub("", stripped).strip())
        return DebugAnalysis(
            code=code,
            debug_analysis=formatted,
            thoughts=bullets[:5] if bullets else list(DEFAULT_DEBUG_THOUGHTS),
            sections=sections,
        )


def relabel_debug_paragraphs(text: str) -> str:
    """Prefixes paragraphs with the debug header their keywords suggest.

    Each header is used at most once; unmatched paragraphs stay under the
    previous one.
    """
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    used: set[str] = set()
    output: List[str] = []
    for paragraph in paragraphs:
        if paragraph.startswith("```"):
            output.append(paragraph)
            continue
        prose = FENCE_RE.sub("", paragraph)
        for key, title, pattern in DEBUG_SECTIONS:
            if key in used:
                continue
            if re.search(rf"\b(?:{pattern})\b", prose, re.IGNORECASE):
                used.add(key)
                paragraph = f"## {title}\n{paragraph}"
                break
        output.append(paragraph)
    return "\n\n".join(output)


def debug_sections(text: str) -> Dict[str, str]:
    headers = list(_HEADER_RE.finditer(text))
    sections: Dict[str, str] = {}
    for index, header in enumerate(headers):
        title = header.group("title")
        key = next(
            (k for k, _, pattern in DEBUG_SECTIONS if re.search(rf"\b(?:{pattern})\b", title, re.IGNORECASE)),
            None,
        )
        if key is None or key in sections:
            continue
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        sections[key] = text[header.end() : end].strip()
    return sections


def synthesize_problem(answer: NormalizedAnswer, language: str) -> ProblemContext:
    """Problem context for single-shot providers, which skip the extraction stage."""
    is_code = answer.is_code
    question_type = "coding" if is_code else ("multiple_choice" if answer.chosen_letter else "other")
    return ProblemContext(
        problem_statement="Problem captured from screenshots",
        question_type=question_type,
        answer_expectations=(
            "Provide runnable and correct code" if is_code else "Answer the question and justify it"
        ),
        evaluation_focus="Answer accuracy",
        language_hint=answer.language or language if is_code else NOT_AVAILABLE,
        final_answer=answer.chosen_letter,
        final_explanation="Analyzed in a single model pass",
        reasoning_steps=list(answer.thoughts or []),
    )
