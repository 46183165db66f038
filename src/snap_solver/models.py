"""Result and context types shared by the classifier and the pipelines."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ANSWER_CODE = "code"
ANSWER_ANALYSIS = "analysis"

NOT_AVAILABLE = "N/A"

PROBLEM_FIELDS = (
    "question_type",
    "problem_statement",
    "constraints",
    "example_input",
    "example_output",
    "answer_expectations",
    "supporting_material",
    "evaluation_focus",
    "language_hint",
)


@dataclass
class NormalizedAnswer:
    answer_type: str
    content: str
    code: str = ""
    thoughts: Optional[List[str]] = None
    time_complexity: Optional[str] = None
    space_complexity: Optional[str] = None
    key_takeaways: Optional[List[str]] = None
    chosen_letter: Optional[str] = None
    question_type: Optional[str] = None
    language: Optional[str] = None

    @property
    def is_code(self) -> bool:
        return self.answer_type == ANSWER_CODE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProblemContext:
    problem_statement: str
    question_type: str = "coding"
    constraints: str = NOT_AVAILABLE
    example_input: str = NOT_AVAILABLE
    example_output: str = NOT_AVAILABLE
    answer_expectations: str = NOT_AVAILABLE
    supporting_material: str = NOT_AVAILABLE
    evaluation_focus: str = NOT_AVAILABLE
    language_hint: str = NOT_AVAILABLE
    final_answer: Optional[str] = None
    final_explanation: Optional[str] = None
    reasoning_steps: List[str] = field(default_factory=list)

    @property
    def is_coding(self) -> bool:
        return "code" in self.question_type or "coding" in self.question_type

    @property
    def readable_type(self) -> str:
        return self.question_type.replace("_", " ")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], language: str = "python") -> "ProblemContext":
        values: Dict[str, Any] = {}
        for name in PROBLEM_FIELDS:
            value = data.get(name)
            if isinstance(value, (list, dict)):
                value = str(value)
            if isinstance(value, (int, float)):
                value = str(value)
            values[name] = value.strip() if isinstance(value, str) and value.strip() else NOT_AVAILABLE

        question_type = values["question_type"]
        values["question_type"] = "coding" if question_type == NOT_AVAILABLE else question_type.lower()
        if values["language_hint"] == NOT_AVAILABLE:
            values["language_hint"] = language
        if values["problem_statement"] == NOT_AVAILABLE:
            values["problem_statement"] = ""
        steps = data.get("reasoning_steps")
        return cls(
            **values,
            final_answer=data.get("final_answer") or None,
            final_explanation=data.get("final_explanation") or None,
            reasoning_steps=[str(step) for step in steps] if isinstance(steps, list) else [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DebugAnalysis:
    code: str
    debug_analysis: str
    thoughts: List[str]
    sections: Dict[str, str] = field(default_factory=dict)
    time_complexity: str = "N/A - Debug mode"
    space_complexity: str = "N/A - Debug mode"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
