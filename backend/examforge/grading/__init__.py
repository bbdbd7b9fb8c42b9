"""ExamForge - Attempt grading."""
