"""ExamForge - LLM and embedding provider access."""
