"""PrismFlow — agentic orchestration core for content curation."""

__version__ = "0.1.0"
