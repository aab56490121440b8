"""Companion agent — conversational orchestration and live-session engine."""

__version__ = "0.1.0"
