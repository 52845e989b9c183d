"""Result extraction from execution payloads."""

from src.extraction.extractor import extract_result, first_string, resolve_path

__all__ = ["extract_result", "first_string", "resolve_path"]
