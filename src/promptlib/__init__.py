"""Prompt Library: capture, tag, search and export the prompts you use with AI tools."""

__version__ = "0.1.0"
