#!/usr/bin/env python
"""Drive one full offline adventure through the HTTP surface.

Creates a session, then loops event -> resolve -> commit until the game
ends or the step cap is hit, printing what each step produced.
"""

import os
import sys
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend"))

TEAM = [
    {"id": 25, "name": "Pikachu", "types": ["electric"], "current_health": 95, "max_health": 95},
    {"id": 7, "name": "Squirtle", "types": ["water"], "current_health": 110, "max_health": 110},
    {"id": 1, "name": "Bulbasaur", "types": ["grass", "poison"], "current_health": 120, "max_health": 120},
]


def main() -> None:
    # You can override this from shell: AI_MODE=openai python scripts/play_session.py
    ai_mode = os.getenv("AI_MODE", "mock").strip().lower() or "mock"
    if ai_mode == "openai" and not os.getenv("OPENAI_API_KEY"):
        print("[play] OPENAI_API_KEY missing; fallback to AI_MODE=mock")
        ai_mode = "mock"
    os.environ["AI_MODE"] = ai_mode
    from adventure_mas.main import app  # noqa: WPS433

    seed = int(os.getenv("SEED", "842720"))
    choice_index = int(os.getenv("CHOICE_INDEX", "1"))
    print(f"[play] AI_MODE={ai_mode} seed={seed}")

    with TestClient(app) as client:
        created = client.post("/api/v1/sessions", json={"team": TEAM, "style": "epic", "seed": seed})
        created.raise_for_status()
        session_id = created.json()["session_id"]
        quest = created.json()["state"]["quest"]
        print(f"Quest: {quest['title']} ({quest['target_steps']} steps)")

        for _ in range(quest["target_steps"] + 4):
            event_resp = client.post(f"/api/v1/sessions/{session_id}/events")
            event_resp.raise_for_status()
            body = event_resp.json()
            event = body["event"]
            picked = min(choice_index, len(body["choices"]) - 1)
            choice = body["choices"][picked]
            print(
                f"\n[step {body['step']}] {event['type']} at {event['context']['location']} "
                f"-> {choice['choice']['label']} ({choice['choice']['risk']}, valid={choice['is_valid']})"
            )

            resolved = client.post(
                f"/api/v1/sessions/{session_id}/resolve",
                json={"event_id": event["id"], "choice_index": picked},
            )
            resolved.raise_for_status()
            result = resolved.json()
            outcome = result["outcome"]
            print(
                f"  success={outcome['success']} score={outcome['score_delta']:+d} "
                f"total={outcome['total_score']} health_lost={outcome['health_lost']}"
            )
            print(f"  {outcome['narration']['narration']}")

            committed = client.put(
                f"/api/v1/sessions/{session_id}/state",
                json={"updated_team": result["updated_team"], "outcome": outcome, "choice": result["choice"]},
            )
            committed.raise_for_status()
            game_over = committed.json()["game_over"]
            if game_over:
                print(f"\n=== GAME OVER (victory={game_over['victory']}) ===")
                print(game_over["final_narration"])
                print(f"Score: {game_over['score']}  Steps: {game_over['steps_completed']}")
                break

        stats = client.get(f"/api/v1/sessions/{session_id}/stats").json()
        print(f"\nMessages published: {stats['bus']['published']}  Log entries: {stats['log_count']}")


if __name__ == "__main__":
    main()
