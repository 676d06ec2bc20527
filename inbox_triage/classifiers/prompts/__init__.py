"""Prompt templates for classifiers."""
