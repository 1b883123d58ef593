"""Rehearse: browser-driven end-to-end test orchestration on top of Playwright."""

__version__ = "0.1.0"
