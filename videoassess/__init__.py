"""Grading engine for peer and teacher video assessments."""
