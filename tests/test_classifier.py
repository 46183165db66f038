import pytest

from snap_solver.classifier import (
    AnswerClassifier,
    find_choice,
    normalize_complexity,
    synthesize_problem,
)
from snap_solver.llm.types import MalformedUpstream
from snap_solver.models import ProblemContext


CODE_REPLY = (
    "```python\n"
    "def f(): return 1\n"
    "```\n"
    "Time complexity: O(1)\n"
    "Thoughts:\n"
    "- item1\n"
    "- item2"
)


@pytest.fixture
def classifier():
    return AnswerClassifier(preferred_language="python")


def test_code_reply_end_to_end(classifier):
    answer = classifier.parse_solution(CODE_REPLY, ProblemContext(problem_statement="Return one"))

    assert answer.answer_type == "code"
    assert answer.code == "def f(): return 1"
    assert answer.content == answer.code
    assert answer.time_complexity == "O(1)"
    assert answer.thoughts == ["item1", "item2"]
    assert answer.language == "python"


def test_single_shot_code_reply(classifier):
    answer = classifier.classify(CODE_REPLY, "python")

    assert answer.is_code
    assert answer.code == "def f(): return 1"
    assert answer.time_complexity == "O(1)"
    assert answer.space_complexity is None
    assert answer.thoughts == ["item1", "item2"]


def test_chinese_final_answer_letter(classifier):
    text = "最终答案：C\n因为只有C满足条件"
    answer = classifier.classify(text)

    assert answer.answer_type == "analysis"
    assert answer.chosen_letter == "C"
    assert answer.key_takeaways == ["正确选项：C"]
    assert answer.content == text


def test_code_block_wins_over_letter(classifier):
    text = "最终答案：A\n```java\nclass A {}\n```"
    answer = classifier.classify(text)

    assert answer.answer_type == "code"
    assert answer.code == "class A {}"
    assert answer.language == "java"
    assert answer.chosen_letter is None


def test_empty_fence_is_skipped(classifier):
    text = "```\n\n```\nThen:\n```go\nfunc main() {}\n```"
    answer = classifier.classify(text)
    assert answer.code == "func main() {}"
    assert answer.language == "go"


def test_prose_falls_back_to_analysis(classifier):
    text = "  The passage argues that caching is a trade-off.  "
    answer = classifier.classify(text)

    assert answer.answer_type == "analysis"
    assert answer.content == "The passage argues that caching is a trade-off."
    assert answer.chosen_letter is None
    assert answer.key_takeaways is None


def test_empty_text_never_raises(classifier):
    answer = classifier.classify("")
    assert answer.answer_type == "analysis"
    assert answer.content == ""


@pytest.mark.parametrize(
    "text, letter",
    [
        ("Final Answer: B", "B"),
        ("The correct answer is (D).", "D"),
        ("答案 a，理由如下", "A"),
        ("Let me think.\nB\nBecause the rest are wrong.", "B"),
        ("The answer is a bit subtle here.", None),
        ("No letters here", None),
    ],
)
def test_find_choice(text, letter):
    assert find_choice(text) == letter


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("O(1)", "O(1)"),
        ("linear because each element visited once", "O(n) - linear because each element visited once"),
        ("O(n log n) since we sort", "O(n log n) - since we sort"),
        ("O(n) - one pass over the array", "O(n) - one pass over the array"),
        ("O(n^2), nested loops", "O(n^2) - nested loops"),
        ("", None),
    ],
)
def test_normalize_complexity(raw, expected):
    assert normalize_complexity(raw) == expected


def test_missing_complexity_gets_template(classifier):
    text = "```js\nconst x = 1;\n```\n**Time complexity:** linear because each element visited once"
    answer = classifier.parse_solution(text, ProblemContext(problem_statement="p", language_hint="javascript"))

    assert answer.time_complexity == "O(n) - linear because each element visited once"
    assert answer.space_complexity == "O(n) - Not stated in the response"
    assert answer.language == "js"


def test_complexity_labels_without_colon(classifier):
    text = "```python\nnums.sort()\n```\nTime complexity O(n log n)\nSpace complexity O(1)"
    answer = classifier.parse_solution(text, ProblemContext(problem_statement="p"))

    assert answer.time_complexity == "O(n log n)"
    assert answer.space_complexity == "O(1)"


def test_label_word_in_prose_is_not_a_section(classifier):
    text = "```python\npass\n```\nTime complexity depends on the input size."
    answer = classifier.parse_solution(text, ProblemContext(problem_statement="p"))

    assert answer.time_complexity == "O(n) - Not stated in the response"


def test_markdown_headed_sections(classifier):
    text = (
        "## Approach\n"
        "1. Sort the input\n"
        "2. Sweep once\n\n"
        "```python\nprint(sorted(xs))\n```\n\n"
        "### Time Complexity\n"
        "O(n log n) - dominated by the sort\n\n"
        "### Space Complexity\n"
        "O(n)"
    )
    answer = classifier.parse_solution(text, ProblemContext(problem_statement="p"))

    assert answer.thoughts == ["Sort the input", "Sweep once"]
    assert answer.time_complexity == "O(n log n) - dominated by the sort"
    assert answer.space_complexity == "O(n)"


def test_general_solution_sections(classifier):
    problem = ProblemContext(problem_statement="Read the passage", question_type="reading_comprehension")
    text = (
        "### Final Answer\n"
        "The author favours option two.\n\n"
        "### Reasoning Steps\n"
        "1. Read the passage\n"
        "2. Compare the options\n\n"
        "### Key Takeaways\n"
        "- Skim first\n"
        "- Verify claims"
    )
    answer = classifier.parse_solution(text, problem)

    assert answer.answer_type == "analysis"
    assert answer.content == text
    assert answer.thoughts == ["Read the passage", "Compare the options"]
    assert answer.key_takeaways == ["Skim first", "Verify claims"]
    assert answer.time_complexity == "N/A - Not a coding task"
    assert answer.question_type == "reading comprehension"


def test_parse_problem_from_fenced_json(classifier):
    text = '```json\n{"question_type": "Coding", "problem_statement": "Two sum", "constraints": ""}\n```'
    problem = classifier.parse_problem(text, "java")

    assert problem.question_type == "coding"
    assert problem.problem_statement == "Two sum"
    assert problem.constraints == "N/A"
    assert problem.language_hint == "java"
    assert problem.is_coding


def test_parse_problem_rejects_prose(classifier):
    with pytest.raises(MalformedUpstream) as info:
        classifier.parse_problem("I cannot read the image.")
    assert "JSON" not in info.value.user_message


def test_debug_reply_with_headers(classifier):
    text = (
        "### Issues Identified\n"
        "- Off by one in loop\n"
        "- Missing null check\n\n"
        "### Specific Improvements and Corrections\n"
        "- Use range(n)\n\n"
        "```python\nfor i in range(n):\n    pass\n```\n\n"
        "### Optimizations\n"
        "- None needed\n\n"
        "### Explanation of Changes Needed\n"
        "The loop overruns the list.\n\n"
        "### Key Points\n"
        "- Check bounds\n"
        "- Test edges"
    )
    analysis = classifier.parse_debug(text)

    assert analysis.code == "for i in range(n):\n    pass"
    assert set(analysis.sections) == {"issues", "improvements", "optimizations", "explanation", "key_points"}
    assert analysis.sections["explanation"] == "The loop overruns the list."
    assert analysis.thoughts == [
        "Off by one in loop",
        "Missing null check",
        "Use range(n)",
        "None needed",
        "Check bounds",
    ]
    assert analysis.debug_analysis == text


def test_debug_reply_without_headers_is_relabelled(classifier):
    text = (
        "There are two issues with the loop bounds.\n\n"
        "A fix is to stop at n - 1.\n\n"
        "Overall summary: bounds matter."
    )
    analysis = classifier.parse_debug(text)

    assert analysis.code == "// Debug mode - see analysis below"
    assert analysis.debug_analysis.startswith("## Issues Identified\nThere are two issues")
    assert "## Specific Improvements and Corrections\nA fix is" in analysis.debug_analysis
    assert analysis.sections["key_points"] == "Overall summary: bounds matter."
    assert analysis.thoughts == ["Debug analysis based on your screenshots"]


def test_synthesized_problem_for_choice_answer(classifier):
    answer = classifier.classify("最终答案：B\n排除法")
    problem = synthesize_problem(answer, "python")

    assert problem.question_type == "multiple_choice"
    assert problem.final_answer == "B"
    assert problem.language_hint == "N/A"
    assert not problem.is_coding
