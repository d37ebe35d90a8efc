# =============================================================================
# Services Package — Infrastructure for the Agents
# =============================================================================
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#     with one-shot generation and persistent chat sessions
#   - retry.py: backoff for rate-limited / overloaded remote calls
#   - json_repair.py: tolerant parsing of model JSON output
#   - citations.py: <claim> span tokenizer and markdown table splitting
#   - cancellation.py: single-flight run tokens
# =============================================================================
