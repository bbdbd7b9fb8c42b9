"""ExamForge - Background jobs: queue, runner and worker."""
