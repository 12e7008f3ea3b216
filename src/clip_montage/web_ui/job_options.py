"""
Helpers for parsing montage submissions from the web form and JSON clients.

Accepts the MontageRequest field names (snake_case or camelCase) as well as
the legacy form keys (videoUrls, interval, montageLength, ...).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..models import MontageRequest

# legacy form key -> MontageRequest field
LEGACY_KEYS = {
    "videoUrl": "sources",
    "videoUrls": "sources",
    "urls": "sources",
    "interval": "clip_interval_seconds",
    "montageLength": "montage_length_seconds",
    "startCutAt": "start_cut_seconds",
    "endCutAt": "end_cut_seconds",
    "linearMode": "linear_mode",
    "variations": "variation_count",
    "keepAudio": "keep_audio",
    "resolution": "output_resolution",
    "layoutType": "layout",
    "customFilename": "custom_filename",
}

TEXT_KEYS = {
    "textOverlay": "text",
    "textSize": "font_size",
    "textColor": "color",
    "textOutline": "outline",
    "textFont": "font",
}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _parse_sources(value: Any) -> List[str]:
    """Accept a list, or a newline/comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.replace(",", "\n").splitlines() if part.strip()]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _text_overlay(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    overlay = data.get("text_overlay", data.get("textOverlay"))
    if isinstance(overlay, dict):
        return overlay

    fields = {field: data[key] for key, field in TEXT_KEYS.items() if data.get(key) not in (None, "")}
    if not fields.get("text"):
        return None
    if "outline" in fields:
        fields["outline"] = _parse_bool(fields["outline"])
    return fields


def normalize_request(data: Dict[str, Any]) -> MontageRequest:
    """
    Build a MontageRequest from a submission payload.

    Raises:
        pydantic.ValidationError: a field failed validation
        ValueError: no sources were supplied
    """
    payload: Dict[str, Any] = {}
    for key, value in (data or {}).items():
        if key in TEXT_KEYS or key in ("text_overlay",):
            continue
        payload[LEGACY_KEYS.get(key, key)] = value

    sources = _parse_sources(payload.pop("sources", None))
    if not sources:
        raise ValueError("No video URL provided")
    payload["sources"] = sources

    for flag in ("linear_mode", "keep_audio"):
        if flag in payload:
            payload[flag] = _parse_bool(payload[flag])

    overlay = _text_overlay(data or {})
    if overlay:
        payload["text_overlay"] = overlay

    return MontageRequest.model_validate(payload)
