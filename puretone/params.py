"""
Launch parameters for a screening session, read from a custom-protocol URL or
from compact query text. Accepted keys: patient (or id/rowid), mode.
Examples:
  screening://start?patient=PZ0012&mode=clinical
  patient=PZ0012&mode=screening
Missing values fall back to an anonymous screening-mode session.
"""

from __future__ import annotations
from typing import Optional, Tuple
from urllib.parse import parse_qs, unquote_plus, urlparse

from .screening.plan import Mode

SCHEME = 'screening'


def _parse_query(text: str) -> dict:
    q = parse_qs(text, keep_blank_values=True)
    return {k.lower(): unquote_plus(v[0]).strip() for k, v in q.items() if v}


def parse_launch_url(token: str) -> dict:
    """Return the raw key/value pairs from a ``screening://`` URL or query text."""
    if not token:
        return {}
    if token.lower().startswith(f'{SCHEME}://'):
        parsed = urlparse(token)
        out = _parse_query(parsed.query)
        if parsed.fragment:
            for key, value in _parse_query(parsed.fragment).items():
                out.setdefault(key, value)
        return out
    if '=' in token and '://' not in token:
        return _parse_query(token)
    return {}


def parse_mode(value) -> Mode:
    if value is None or str(value).strip() == '':
        return Mode.SCREENING
    text = str(value).strip().lower()
    if text in ('clinical', 'clinica', 'full', 'c'):
        return Mode.CLINICAL
    if text in ('screening', 's'):
        return Mode.SCREENING
    raise ValueError(f"Unknown test mode: {value!r} (expected 'screening' or 'clinical')")


def session_params(values: dict) -> Tuple[Optional[str], Mode]:
    """(identity_ref, mode) from parsed values; an empty identity means anonymous."""
    identity = (values.get('patient') or values.get('id') or values.get('rowid') or '').strip()
    return (identity or None), parse_mode(values.get('mode'))
