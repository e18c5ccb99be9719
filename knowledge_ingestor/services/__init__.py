"""Application services: config management, job tracking, credential vault, orchestration."""
