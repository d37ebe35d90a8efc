# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All tunables of the research team live here: LLM provider selection,
# retry behaviour, thinking budgets, and the bounds of the plan-review and
# output-audit loops.
#
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `LLM_MODEL=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from research_team.config import settings
#   print(settings.plan_review_max_rounds)
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults match the behaviour of the research team out of the box; only
    the API key has to be supplied.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Document Research Team"
    app_version: str = "0.1.0"
    debug: bool = True
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # ANTHROPIC_API_KEY: for the "anthropic" provider
    # OPENAI_API_KEY: for the "openai_compatible" provider
    # LLM_API_KEY overrides both when set.
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    # Two providers are supported:
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": any OpenAI-compatible API
    #
    # llm_model serves document agents, clarification and the review boards.
    # llm_reasoning_model (if set) serves planning and synthesis, the two
    # steps that need the most reasoning depth.
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    # e.g. "openai_compatible/deepseek-chat@https://api.deepseek.com/v1";
    # when set it takes precedence over llm_provider / llm_model / llm_base_url
    llm_provider_id: str | None = None
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "claude-sonnet-4-6"
    llm_reasoning_model: str | None = None
    llm_temperature: float = 0.1
    llm_max_tokens: int = 8192

    # -------------------------------------------------------------------------
    # Retry Configuration
    # -------------------------------------------------------------------------
    # Delay before retry i (0-based) = base_delay_ms * 2**i + jitter(0..1000ms).
    # Only rate-limit / overload errors are retried.
    # -------------------------------------------------------------------------
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 2000
    planner_retry_attempts: int = 4
    planner_retry_base_delay_ms: int = 3000
    briefing_retry_base_delay_ms: int = 3000
    analysis_retry_attempts: int = 5
    synthesis_retry_base_delay_ms: int = 5000

    # -------------------------------------------------------------------------
    # Thinking Budgets (tokens)
    # -------------------------------------------------------------------------
    # Deep analysis synthesis gets an order of magnitude more latitude than
    # a precise single-fact answer.
    # -------------------------------------------------------------------------
    analysis_thinking_budget: int = 2048
    planner_thinking_budget: int = 16384
    synthesis_thinking_budget_simple: int = 4096
    synthesis_thinking_budget_deep: int = 32768

    # -------------------------------------------------------------------------
    # Orchestration Bounds
    # -------------------------------------------------------------------------
    # plan_review_max_rounds: critique/refine rounds before execution
    # output_audit_max_retries: re-plan cycles after a rejected report
    # history_window: conversation messages fed to planner and synthesizer
    # max_documents: briefed documents allowed at once
    # -------------------------------------------------------------------------
    plan_review_max_rounds: int = 5
    output_audit_max_retries: int = 1
    history_window: int = 10
    max_documents: int = 5

    # -------------------------------------------------------------------------
    # Plan Review Heuristics
    # -------------------------------------------------------------------------
    review_min_question_words: int = 5
    review_min_strategy_words: int = 12

    # -------------------------------------------------------------------------
    # Prompt Overrides
    # -------------------------------------------------------------------------
    # Directory of <prompt_name>.txt files replacing the built-in templates
    # in research_team/agents/prompts.py. None = built-ins only.
    # -------------------------------------------------------------------------
    prompt_dir: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = Settings()
