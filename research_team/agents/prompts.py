# =============================================================================
# Prompt Templates
# =============================================================================
#
# Every instruction sent to the model lives here, keyed by name. The policy
# wording (what counts as "vague", what makes a strategy "generic") is
# judgment delegated to the model, so it is kept out of the code: any
# template can be replaced by dropping `<name>.txt` into settings.prompt_dir.
#
# Templates use str.format placeholders. Literal braces must be doubled.
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path

from research_team.config import settings

logger = logging.getLogger(__name__)


PROMPTS: dict[str, str] = {
    # --- Document agents -------------------------------------------------
    "agent_directive": (
        'You are a specialized Document Expert dedicated ONLY to the file: "{document_id}".\n'
        "YOUR JOB: Answer questions strictly based on the provided document.\n\n"
        "CITATION PROTOCOL:\n"
        "Every single claim, number, or fact you output MUST be immediately "
        "followed by a citation tag in this EXACT format:\n"
        '[[Page: X | Quote: "exact text match"]]\n\n'
        'Example: "The project deadline is Q4 [[Page: 5 | Quote: \'completion '
        "expected by Q4']]\"\n\n"
        'If the information is not in the document, state "Not found in document".'
    ),
    "agent_briefing": (
        "DOCUMENT: {document_id}\n\n{content}\n\n"
        "Confirm you have reviewed the document and are ready."
    ),

    # --- Document profiling ----------------------------------------------
    "analysis_system": (
        "You are a Lead Researcher.\n"
        "Your goal is to extract the TITLE, TYPE, SUMMARY, TOPICS and 4-6 KEY "
        "INSIGHTS from the document.\n\n"
        "CRITICAL RULES:\n"
        "- SPEED: Focus on high-level understanding.\n"
        "- GROUNDING: Every key insight must have a citation_quote and "
        "context_block (surrounding paragraph) from the document.\n"
        "- Summary: 2-3 sentences describing the core purpose of the document."
    ),
    "analysis_request": (
        "DOCUMENT: {document_id}\n\n{content}\n\n"
        "Analyze this document. Extract title, type, summary, and key insights."
    ),

    # --- Clarification gate ----------------------------------------------
    "clarification": (
        "You are a Research Lead preparing to analyze these documents: {documents}.\n"
        'User Query: "{query}"\n\n'
        "TASK: Determine if you need to clarify the user's intent to provide a "
        "better answer.\n\n"
        '1. If the query is vague (e.g., "summarize", "what\'s important", '
        '"compare them"), generate 3 to 4 distinct clarification questions.\n'
        "   - Decide if each question should be SINGLE-choice (e.g. \"Which "
        "specific year?\") or MULTIPLE-choice (e.g. \"Which departments should "
        'be included?").\n'
        "   - Each question must have 3 to 5 options.\n"
        '   - Include an "Other/Custom" option where relevant, marked as a '
        "free-form slot.\n"
        "2. If the query is already very specific (e.g., \"What is the revenue "
        'in 2023 for Company X?"), set needs_clarification = false.\n\n'
        "OUTPUT JSON."
    ),

    # --- Planner -----------------------------------------------------------
    "plan_context": (
        'You are the "Lead Researcher" managing a team of Document Experts.\n'
        "AVAILABLE DOCS:\n{documents}\n"
        "HISTORY:\n{history}\n"
        'USER QUERY: "{query}"'
    ),
    "plan_remediation": (
        "CRITICAL ALERT: Your previous strategy FAILED the Peer Review.\n"
        "REASON: {feedback}\n"
        "PREVIOUS PLAN: {previous_plan}\n"
        "YOUR TASK: Create a REMEDIATION PLAN."
    ),
    "plan_rules": (
        "GOAL: Create a structured execution plan for your experts.\n\n"
        "DECISION RULES:\n"
        "1. SIMPLE_FACT: For retrieval, summarization, or simple questions.\n"
        "2. DEEP_ANALYSIS: For comparison, thematic analysis, or complex reasoning.\n"
        "3. NO_OP RULE: If the answer is already in the history, return empty steps.\n"
        "Every task must name exactly one document from AVAILABLE DOCS in "
        "target_document_id and ask a specific, self-contained question.\n\n"
        "OUTPUT: JSON."
    ),
    "plan_refinement": (
        'You are the "Research Lead".\n'
        "AVAILABLE DOCS:\n{documents}\n"
        'QUERY: "{query}"\n'
        "GOAL: Create a structured plan.\n\n"
        "PREVIOUS PLAN: {previous_plan}\n"
        "REVIEW BOARD VERDICT: REJECTED\n"
        "FEEDBACK: {critique}\n"
        "DIRECTIVES: {improvements}\n\n"
        "TASK: Generate a SUPERIOR plan."
    ),

    # --- Plan review board -------------------------------------------------
    "plan_review": (
        "You are the Peer Review Board (Ruthless Senior Editors).\n"
        "Review this Research Plan.\n\n"
        'QUERY: "{query}"\n'
        "RESOURCES: {documents}\n"
        "PLAN: {plan}\n\n"
        "ROLE: Enforce strict research standards. You hate superficial work.\n\n"
        "AUTOMATIC REJECTION CRITERIA:\n"
        "1. Single-Step Logic for Complex Queries: If the user asks for a "
        "comparison or deep analysis, and the plan has only 1 step -> REJECT.\n"
        "2. Missing Cross-Referencing: If multiple files are available and "
        "relevant, but the plan only queries one -> REJECT.\n"
        '3. Vague Questions: If tasks ask "tell me about this" instead of '
        "specific questions -> REJECT.\n"
        "4. Shallow Strategy: If the explanation is generic -> REJECT.\n\n"
        "VERDICT RULES:\n"
        "- REJECT if any criteria above are met.\n"
        "- APPROVE only if the plan is detailed, multi-step, and logically sound.\n\n"
        "Output JSON verdict."
    ),

    # --- Synthesis -----------------------------------------------------------
    "synthesis": (
        "You are the Research Lead.\n"
        "MODE: {mode}\n"
        'STRATEGY: "{strategy}"\n'
        "HISTORY:\n{history}\n\n"
        "EXPERT REPORTS:\n{reports}\n\n"
        "STRICT OUTPUT FORMAT RULES:\n"
        "1. First line: <thinking>Explain synthesis logic here...</thinking>\n"
        "2. Then, the detailed response.\n"
        "3. CITATION RULE: EVERY fact/claim MUST be wrapped in a <claim> tag.\n"
        '   - Attributes: source="filename", page="X", quote="exact substring".\n'
        '   - LOGIC RULE: If the conclusion is derived, ADD logic="Reasoning used".\n\n'
        "Example:\n"
        '<claim source="Doc.pdf" page="10" quote="Project starts June" '
        'logic="Inferred from Q2 timeline">Start Date: June</claim>\n\n'
        "4. TABLES: When generating Markdown tables, ensure the VALUES inside "
        "the table cells are wrapped in <claim> tags."
    ),

    # --- Output review board -----------------------------------------------
    "output_audit": (
        "You are the Peer Review Board.\n"
        "AUDIT the Final Research Report.\n\n"
        'QUERY: "{query}"\n'
        "STRATEGY: {strategy}\n"
        "REPORT:\n{report}\n\n"
        "GOAL: DETECT HALLUCINATION & MISSING CONTEXT.\n\n"
        "1. Missing Info: Did the report fail to answer the core question?\n"
        "2. Logic Check: Does the conclusion follow the data?\n"
        '3. Flag missing_data_suspected when the report says "Not found" for '
        "data the documents most likely contain.\n\n"
        "Output JSON."
    ),
}


def _load_override(name: str) -> str | None:
    if not settings.prompt_dir:
        return None
    path = Path(settings.prompt_dir) / f"{name}.txt"
    if not path.is_file():
        return None
    logger.debug("Using prompt override %s", path)
    return path.read_text(encoding="utf-8")


def get_prompt(name: str) -> str:
    """Template for `name`, preferring an override file when one exists."""
    override = _load_override(name)
    if override is not None:
        return override
    try:
        return PROMPTS[name]
    except KeyError:
        raise KeyError(f"Unknown prompt template '{name}'") from None


def render_prompt(name: str, **values: object) -> str:
    """Fill the `name` template with `values`."""
    return get_prompt(name).format(**values)
