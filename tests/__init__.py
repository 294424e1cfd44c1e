"""Test suite for the formsession engine.

This package contains tests for:
- Condition evaluation and visibility resolution
- Field validation and completion
- Template loading and field type defaults
- Immutable form state transitions
- Session lifecycle, events, persistence and autosave
- Library auto-populate and attachment collection
"""
