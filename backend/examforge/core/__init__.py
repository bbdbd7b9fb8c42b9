"""ExamForge - Core configuration, persistence and process context."""
