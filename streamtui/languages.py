"""Subtitle language codes and the language filter."""

# ISO 639-1 code -> (ISO 639-2 code, display name)
LANGUAGES: dict[str, tuple[str, str]] = {
    "en": ("eng", "English"),
    "es": ("spa", "Spanish"),
    "fr": ("fre", "French"),
    "de": ("ger", "German"),
    "it": ("ita", "Italian"),
    "pt": ("por", "Portuguese"),
    "ru": ("rus", "Russian"),
    "ja": ("jpn", "Japanese"),
    "ko": ("kor", "Korean"),
    "zh": ("chi", "Chinese"),
    "ar": ("ara", "Arabic"),
    "hi": ("hin", "Hindi"),
    "nl": ("dut", "Dutch"),
    "pl": ("pol", "Polish"),
    "tr": ("tur", "Turkish"),
    "sv": ("swe", "Swedish"),
    "no": ("nor", "Norwegian"),
    "da": ("dan", "Danish"),
    "fi": ("fin", "Finnish"),
    "el": ("gre", "Greek"),
}

_ALIASES = {"fra": "fr", "deu": "de", "zho": "zh", "nld": "nl", "ell": "el"}
_BY_THREE = {three: two for two, (three, _) in LANGUAGES.items()}


def to_two_letter(code: str) -> str:
    code = code.strip().lower()
    if code in LANGUAGES:
        return code
    return _BY_THREE.get(code) or _ALIASES.get(code) or code


def to_three_letter(code: str) -> str:
    """ISO 639-2 code for a 2- or 3-letter code; unknown codes come back lower-cased."""
    entry = LANGUAGES.get(to_two_letter(code))
    return entry[0] if entry else code.strip().lower()


def language_name(code: str) -> str:
    """Display name for a 2- or 3-letter code; unknown codes are upper-cased."""
    entry = LANGUAGES.get(to_two_letter(code))
    return entry[1] if entry else code.upper()


def parse_languages(value: str | list[str] | None) -> list[str]:
    """Split a comma-separated language list (`"eng,spa"`) into codes."""
    if not value:
        return []
    parts = value if isinstance(value, list) else value.split(",")
    return [p.strip().lower() for p in parts if p.strip()]


def matches_language(language: str, requested: list[str]) -> bool:
    """
    A language matches when a requested code equals it or either is a prefix
    of the other (`en` / `eng`). Codes naming the same language in the 2- and
    3-letter tables (`es` / `spa`) also match. An empty request matches all.
    """
    if not requested:
        return True
    language = language.strip().lower()
    if not language:
        return False
    for code in requested:
        if code == language or code.startswith(language) or language.startswith(code):
            return True
        if to_two_letter(code) == to_two_letter(language):
            return True
    return False
