"""
Core modules for Explain Engage.

This package contains the engagement core: quota gating, confusion
detection, level adjustment, streaks, achievements and the per-question
pipeline that ties them together.
"""
