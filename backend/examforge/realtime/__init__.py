"""ExamForge - Live status fan-out."""
