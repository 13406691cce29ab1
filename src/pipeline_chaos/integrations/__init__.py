"""Optional integrations (pydantic-evals judge rules)."""
