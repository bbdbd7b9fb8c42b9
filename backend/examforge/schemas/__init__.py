"""ExamForge - Provider-output and API schemas."""
