"""ExamForge - Source fetching, chunking and embedding."""
