"""AI-assisted photo analysis."""

from .analyzer import AiConfig, PhotoAnalyzer, parse_analysis, strip_code_fences

__all__ = ["AiConfig", "PhotoAnalyzer", "parse_analysis", "strip_code_fences"]
