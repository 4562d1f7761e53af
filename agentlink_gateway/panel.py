"""Advisory panel configuration.

The panel is an ordered, read-only list of advisor profiles. Order matters:
both deliberation rounds walk the panel in this order, and the round-2 peer
transcript is built from round-1 votes in the same order.

Env vars:
  - AGENTLINK_PANEL_JSON: JSON list of advisor objects
  - AGENTLINK_PANEL_FILE: path to a JSON file with the same list

Each advisor object needs `name` and `model`; `specialty` and `perspective`
are optional.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .errors import al_error, AL_E_CONFIG_INVALID

ENV_PANEL_JSON = "AGENTLINK_PANEL_JSON"
ENV_PANEL_FILE = "AGENTLINK_PANEL_FILE"

PERSPECTIVES = ("long-term", "short-term")


@dataclass(frozen=True)
class AdvisorProfile:
    name: str
    model: str
    specialty: str
    perspective: str


DEFAULT_PANEL: Tuple[AdvisorProfile, ...] = (
    AdvisorProfile(
        name="Llama 3.3 70B Strategist",
        model="llama-3.3-70b-versatile",
        specialty="Deep Analysis",
        perspective="long-term",
    ),
    AdvisorProfile(
        name="Llama 3.1 8B Tactician",
        model="llama-3.1-8b-instant",
        specialty="Rapid Technical Assessment",
        perspective="short-term",
    ),
)


def _profile_from_dict(item: Dict[str, Any]) -> AdvisorProfile:
    name = str(item.get("name", "")).strip()
    model = str(item.get("model", "")).strip()
    if not name or not model:
        raise ValueError("advisor entries need a name and a model")
    perspective = str(item.get("perspective", "long-term")).strip().lower()
    if perspective not in PERSPECTIVES:
        raise ValueError(f"unsupported perspective: {perspective}")
    return AdvisorProfile(
        name=name,
        model=model,
        specialty=str(item.get("specialty", "General Analysis")).strip() or "General Analysis",
        perspective=perspective,
    )


def parse_panel(data: Any) -> Tuple[AdvisorProfile, ...]:
    if not isinstance(data, list) or not data:
        raise ValueError("panel must be a non-empty JSON list")
    profiles: List[AdvisorProfile] = []
    for item in data:
        if not isinstance(item, dict):
            raise ValueError("panel entries must be JSON objects")
        profiles.append(_profile_from_dict(item))
    names = [p.name for p in profiles]
    if len(set(names)) != len(names):
        raise ValueError("advisor names must be unique")
    return tuple(profiles)


def load_panel_from_env() -> Tuple[AdvisorProfile, ...]:
    """Load the panel from env/file, falling back to DEFAULT_PANEL.

    Configuration that is present but malformed is an error rather than a
    silent fallback.
    """
    raw_json = os.getenv(ENV_PANEL_JSON)
    file_path = os.getenv(ENV_PANEL_FILE)
    if not raw_json and not file_path:
        return DEFAULT_PANEL

    try:
        if raw_json:
            data = json.loads(raw_json)
        else:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        return parse_panel(data)
    except (OSError, ValueError) as e:
        raise al_error(AL_E_CONFIG_INVALID, "advisor panel configuration is invalid", http_status=500, error=str(e)) from e
