"""ExamForge - HTTP API."""
