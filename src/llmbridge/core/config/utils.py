"""Configuration helper functions."""

import re

_DUPLICATE_SLASHES_RE = re.compile(r"([^:]/)/+")


def normalize_base_url(host: str) -> str:
    """Trim whitespace and a single trailing slash from a host string."""
    stripped = host.strip()
    return stripped.removesuffix("/")


def build_endpoint(host: str, path: str, *, is_full_path: bool = False) -> str:
    """Join a configured host and an API path.

    A full-path host is already the complete endpoint and is returned as-is.
    Otherwise a trailing ``/v1`` on the host is folded into ``path`` so the
    version segment appears once, and duplicate slashes (other than the one
    after the scheme) are collapsed.

    Args:
        host: Configured host, e.g. ``https://api.openai.com`` or
            ``https://proxy.example/v1/``.
        path: API path starting with the version, e.g. ``v1/chat/completions``.
        is_full_path: Whether ``host`` is already the complete endpoint.

    Returns:
        The endpoint URL.

    """
    if is_full_path:
        return host.strip()

    base_url = normalize_base_url(host)
    api_path = path.lstrip("/")
    if base_url.endswith("/v1") and api_path.startswith("v1/"):
        base_url = base_url.removesuffix("/v1")

    url = f"{base_url}/{api_path}"
    url = _DUPLICATE_SLASHES_RE.sub(r"\1", url)
    return url.replace("/v1/v1/", "/v1/")


def is_gemini_3_model(model: str) -> bool:
    """Return True for Gemini 3 models, which take a thinking level not a budget."""
    return "gemini-3" in model.lower()


def parse_key_value_headers(raw: str | None) -> dict[str, str]:
    """Parse ``"name:value;name:value"`` header lists.

    Entries without a colon or with an empty name are skipped.

    Examples:
        >>> parse_key_value_headers("anthropic-beta:tools-2024;x-flag: on")
        {'anthropic-beta': 'tools-2024', 'x-flag': 'on'}

    """
    headers: dict[str, str] = {}
    if not raw:
        return headers
    for entry in raw.split(";"):
        name, sep, value = entry.partition(":")
        name = name.strip()
        if not sep or not name:
            continue
        headers[name] = value.strip()
    return headers
