from __future__ import annotations

from answerengine.config import get_settings


def test_defaults_context_budget():
    settings = get_settings({})
    assert settings.context_max_items == 4
    assert settings.context_max_chars == 8000
    assert settings.document_excerpt_chars <= settings.context_max_chars


def test_search_providers_accept_comma_separated_string():
    settings = get_settings({"search_providers": "Serper, brave"})
    assert settings.search_providers_tuple == ("serper", "brave")


def test_search_providers_default_to_serper():
    settings = get_settings({})
    assert settings.search_providers_tuple == ("serper",)


def test_upload_limits_defaults():
    settings = get_settings({})
    assert settings.max_files >= 1
    assert settings.max_upload_size_mb >= 1
    assert ".pdf" in settings.allowed_extensions_tuple
