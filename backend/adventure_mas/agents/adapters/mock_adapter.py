"""Deterministic adapter for local development and repeatable tests.

Produces records without external API calls. Output is keyed by the
prompt's ``RECORD:`` marker and derived from a hash of the prompt, so the
same prompt always yields the same text. ``wrap`` reproduces the sloppy
shapes real models return (prose, code fences, truncation).
"""

import hashlib
import json
from typing import Any, Literal

from ..prompts import fact, record_kind
from .base import CompletionAdapter, CompletionCall

Wrap = Literal["plain", "prose", "fence", "truncate"]

_TITLES = ["The Shattered Lighthouse", "Whispers of the Old Forest", "The Lost Expedition", "Embers Under the Glacier"]
_FOES = [("Rattata", ["normal"]), ("Geodude", ["rock", "ground"]), ("Zubat", ["poison", "flying"]), ("Ponyta", ["fire"])]
_PLACES = ["a misty route", "an abandoned mine", "a quiet harbor", "a ruined tower"]


class MockCompletionAdapter(CompletionAdapter):
    """Simple deterministic policy with record-aware outputs."""

    def __init__(self, wrap: Wrap = "plain") -> None:
        self.wrap = wrap
        self.calls: list[CompletionCall] = []

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        self.calls.append(CompletionCall(prompt=prompt, max_tokens=max_tokens, temperature=temperature))
        digest = hashlib.sha256(prompt.encode("utf-8")).digest()
        kind = record_kind(prompt)
        if kind == "quest":
            record = self._quest(prompt, digest)
        elif kind == "event":
            record = self._event(prompt, digest)
        elif kind == "choices":
            record = self._choices(prompt, digest)
        elif kind == "narration":
            record = self._narration(prompt, digest)
        else:
            record = {"content": "acknowledged"}
        return self._wrap(json.dumps(record, ensure_ascii=False))

    def _wrap(self, text: str) -> str:
        if self.wrap == "prose":
            return f"Sure! Here is the record you asked for:\n{text}\nLet me know if you need anything else."
        if self.wrap == "fence":
            return f"```json\n{text}\n```"
        if self.wrap == "truncate":
            return text[:-1]
        return text

    def _quest(self, prompt: str, digest: bytes) -> dict[str, Any]:
        steps = fact(prompt, "TARGET STEPS") or "8"
        return {
            "title": _TITLES[digest[0] % len(_TITLES)],
            "description": "A strange signal calls the team far from home. Old rivals and new allies wait on the road.",
            "objective": "Find the source of the signal and restore peace to the region",
            "difficulty": fact(prompt, "DIFFICULTY") or "normal",
            "target_steps": int(steps) if steps.isdigit() else 8,
        }

    def _event(self, prompt: str, digest: bytes) -> dict[str, Any]:
        foe, foe_types = _FOES[digest[1] % len(_FOES)]
        level = fact(prompt, "ENEMY LEVEL") or "5"
        return {
            "type": fact(prompt, "SUGGESTED EVENT") or "wild_battle",
            "difficulty": fact(prompt, "DIFFICULTY") or "normal",
            "scene": f"The path narrows and a wild {foe} blocks the way. The team steadies itself.",
            "context": {
                "enemy_name": foe,
                "enemy_level": int(level) if level.isdigit() else 5,
                "enemy_types": foe_types,
                "location": _PLACES[digest[2] % len(_PLACES)],
                "quest_relevance": "The signal grows stronger beyond this point",
                "mission_critical": fact(prompt, "MISSION CRITICAL") == "true",
            },
        }

    def _choices(self, prompt: str, digest: bytes) -> dict[str, Any]:
        raw_ids = fact(prompt, "TEAM IDS") or ""
        ids = [int(x) for x in raw_ids.split(",") if x.strip().isdigit()]
        lead = ids[digest[3] % len(ids)] if ids else None
        return {
            "narration": "The team exchanges a look. Every option carries its own price.",
            "quest_progress": "One step closer to the source of the signal",
            "choices": [
                {
                    "risk": "SAFE",
                    "label": "Hold position",
                    "description": "Stay together and wait for an opening.",
                    "affected_members": [lead] if lead is not None else [],
                    "potential_consequences": "Slow but steady",
                },
                {
                    "risk": "MODERATE",
                    "label": "Measured strike",
                    "description": "Send the lead member forward with support.",
                    "affected_members": [lead] if lead is not None else [],
                    "potential_consequences": "Some damage likely",
                },
                {
                    "risk": "RISKY",
                    "label": "All-out assault",
                    "description": "Throw everything at the problem at once.",
                    "affected_members": ids,
                    "potential_consequences": "Big reward or heavy losses",
                },
            ],
        }

    def _narration(self, prompt: str, digest: bytes) -> dict[str, Any]:
        outcome = fact(prompt, "OUTCOME") or "Success"
        action = fact(prompt, "ACTION") or "The plan"
        score = fact(prompt, "SCORE") or "+0"
        verb = "pays off" if outcome == "Success" else "falls short"
        return {
            "narration": f"{action} {verb}. The dust settles slowly over the field.",
            "state_highlights": [f"Score {score}", f"Outcome: {outcome}"],
            "quest_progress": "The quest moves forward",
            "next_hook": ["A distant roar echoes.", "Footsteps approach.", "The signal flickers."][digest[4] % 3],
        }
