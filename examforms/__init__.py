"""Application package for the exam forms session & scoring service."""
