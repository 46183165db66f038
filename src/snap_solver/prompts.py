"""Prompt builders."""

from __future__ import annotations

from typing import Tuple

from .models import NOT_AVAILABLE, ProblemContext
from .utils import has_value

EXTRACTION_INSTRUCTION = (
    "You are an interview task interpreter supporting coding, math, logical reasoning, "
    "reading comprehension, and analytical prompts.\n"
    "Return ONLY valid JSON with the following fields:\n"
    "{\n"
    '  "question_type": "coding | reading_comprehension | logical_reasoning | data_interpretation | math | other",\n'
    '  "problem_statement": "...",\n'
    '  "constraints": "...",\n'
    '  "example_input": "...",\n'
    '  "example_output": "...",\n'
    '  "answer_expectations": "...",\n'
    '  "supporting_material": "...",\n'
    '  "evaluation_focus": "...",\n'
    '  "language_hint": "..."\n'
    "}\n"
    "Rules:\n"
    "- Use complete sentences when summarizing textual prompts.\n"
    '- Use "N/A" if a field is not provided.\n'
    '- Set "language_hint" to the requested programming language. '
    'If the task is not coding or no language is specified, set it to "N/A".\n'
    "- Do not include markdown code fences or commentary outside of the JSON body."
)

CODING_SYSTEM_PROMPT = (
    "You are an expert coding interview assistant. "
    "Provide clear, optimal solutions with detailed explanations."
)

DEBUG_SYSTEM_PROMPT = (
    "You are a coding interview assistant helping debug and improve solutions. "
    "Analyze these screenshots which include either error messages, incorrect outputs, "
    "or test cases, and provide detailed debugging help."
)


def build_extraction_prompt(language: str) -> str:
    return (
        "Analyze the uploaded screenshots and populate the schema above. "
        f"The user's preferred coding language is {language}. "
        "Respect any language explicitly requested in the task."
    )


def build_single_shot_prompt(language: str) -> str:
    return (
        "请阅读我接下来提供的题目截图：\n"
        "1) 如果是单选题：第一行只输出“最终答案：X”，X 为 A/B/C/D 中的一个字母；第二行用不超过20个字说明原因。\n"
        "2) 如果是代码题：直接给出完整、可运行、能通过常见边界用例的代码。"
        f"优先使用题面指定的语言，未指定时使用 {language}。"
        f"代码放在标注语言的 Markdown 代码块中，例如 ```{language}\\n...```。解释尽量简短。\n"
        "3) 不要输出 JSON，也不要多余的前言。"
    )


def _or_default(value: str, default: str) -> str:
    return value if has_value(value) else default


def build_solution_prompt(problem: ProblemContext, language: str) -> Tuple[str, str]:
    """Returns (system, user) prompts for the solution stage."""
    question_type = problem.readable_type
    expectations = _or_default(
        problem.answer_expectations,
        "Provide the most accurate and efficient solution."
        if problem.is_coding
        else "Provide the most accurate and complete answer.",
    )
    focus = _or_default(problem.evaluation_focus, "Clarity, correctness, and coverage of key points.")
    material = _or_default(problem.supporting_material, NOT_AVAILABLE)
    material_block = f"SUPPORTING MATERIAL:\n{material}\n\n" if material != NOT_AVAILABLE else ""

    if problem.is_coding:
        user = (
            "Please respond in Simplified Chinese for all narrative sections "
            f"while keeping the source code in {language}.\n\n"
            "Generate a detailed solution for the following coding problem:\n\n"
            f"QUESTION TYPE: {question_type}\n"
            f"PROBLEM STATEMENT:\n{problem.problem_statement}\n\n"
            f"CONSTRAINTS:\n{_or_default(problem.constraints, 'No specific constraints provided.')}\n\n"
            f"EXAMPLE INPUT:\n{_or_default(problem.example_input, 'No example input provided.')}\n\n"
            f"EXAMPLE OUTPUT:\n{_or_default(problem.example_output, 'No example output provided.')}\n\n"
            f"ANSWER EXPECTATIONS:\n{expectations}\n\n"
            f"{material_block}"
            f"EVALUATION FOCUS:\n{focus}\n\n"
            f"LANGUAGE: {language}\n\n"
            "Respond with (headings may stay in English, but the content under each heading "
            "must be in Simplified Chinese):\n"
            f"1. Code: Provide a clean, optimized implementation in {language}\n"
            "2. Your Thoughts: List key insights and reasoning behind your approach\n"
            "3. Time complexity: Give Big-O notation plus a detailed (2+ sentence) explanation\n"
            "4. Space complexity: Give Big-O notation plus a detailed (2+ sentence) explanation\n\n"
            f"Ensure the solution handles edge cases and includes brief inline comments in {language} if useful."
        )
        return CODING_SYSTEM_PROMPT, user

    system = (
        f"You are an interview assistant specialized in {question_type} tasks. "
        "Provide rigorous yet concise answers grounded in the available information."
    )
    user = (
        "Please answer entirely in Simplified Chinese while retaining the section headings below.\n\n"
        f"Task type: {question_type}\n"
        f"PROMPT:\n{problem.problem_statement}\n\n"
        f"ANSWER EXPECTATIONS:\n{expectations}\n\n"
        f"{material_block}"
        f"EVALUATION FOCUS:\n{focus}\n\n"
        "Respond in Markdown with these exact sections (content in Simplified Chinese):\n\n"
        "### Final Answer\n"
        "Provide the polished answer or recommendation in a few focused sentences.\n\n"
        "### Reasoning Steps\n"
        "List numbered steps that show how you reached the answer, citing any supporting material.\n\n"
        "### Key Takeaways\n"
        "Provide 3 concise bullet points highlighting what the candidate should remember.\n\n"
        "Keep the tone professional and align your answer with the evaluation focus."
    )
    return system, user


def build_debug_prompt(problem: ProblemContext, language: str) -> str:
    structure = (
        "### Issues Identified\n"
        "- List each issue as a bullet point with clear explanation\n\n"
        "### Specific Improvements and Corrections\n"
        "- List specific code changes needed as bullet points\n\n"
        "### Optimizations\n"
        "- List any performance optimizations if applicable\n\n"
        "### Explanation of Changes Needed\n"
        "Here provide a clear explanation of why the changes are needed\n\n"
        "### Key Points\n"
        "- Summary bullet points of the most important takeaways"
    )
    return (
        f'I\'m solving this coding problem: "{problem.problem_statement}" in {language}. '
        "I need help with debugging or improving my solution. "
        "Here are screenshots of my code, the errors or test cases.\n\n"
        "YOUR RESPONSE MUST FOLLOW THIS EXACT STRUCTURE WITH THESE SECTION HEADERS:\n"
        f"{structure}\n\n"
        "If you include code examples, use proper markdown code blocks with language "
        f"specification (e.g. ```{language}```)."
    )
