"""On-device art docent LLM: prefix-cached inference sessions with token streaming."""

__version__ = "0.1.0"
