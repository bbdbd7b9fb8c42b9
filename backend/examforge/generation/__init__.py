"""ExamForge - Grounded paper generation."""
