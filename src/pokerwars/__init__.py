"""Poker Wars — unattended No-Limit Hold'em tournaments between LLM agents."""

__version__ = "0.1.0"
