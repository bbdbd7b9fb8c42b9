"""ExamForge - grounded exam generation and grading."""

__version__ = "0.1.0"
