# =============================================================================
# Agents Package — Research Team Orchestration
# =============================================================================
#   - swarm.py: one document expert session per briefed document
#   - clarifier.py: clarification gate and answer form
#   - planner.py: lead researcher execution plans
#   - review_board.py: plan critique loop and output audit
#   - executor.py: parallel fan-out to document experts
#   - synthesizer.py: cited report from expert findings
#   - profiler.py: dashboard summaries of documents
#   - orchestrator.py: LangGraph turn graph and the ResearchTeam facade
#   - prompts.py: every prompt template, overridable from disk
# =============================================================================
