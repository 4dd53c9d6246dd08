"""Weighted voting and negotiation result types."""

from dataclasses import dataclass, field
from typing import Any

CONSENSUS_THRESHOLD = 0.7


@dataclass(frozen=True)
class Vote:
    agent_name: str
    choice: str
    confidence: float
    weight: float
    reasoning: str = ""


@dataclass(frozen=True)
class VotingResult:
    """Aggregate of the votes received before the deadline.

    ``total_confidence`` is the winner's summed confidence x weight.
    ``consensus`` compares the winner's weight to the weight of received
    votes only; agents that missed the deadline do not count.
    """

    winner: str
    consensus: bool
    total_confidence: float
    votes: list[Vote] = field(default_factory=list)
    expected_voters: int = 0
    reasoning_summary: str = ""

    @property
    def complete(self) -> bool:
        return len(self.votes) >= self.expected_voters


@dataclass(frozen=True)
class NegotiationResult:
    consensus: dict[str, Any] | None
    rounds: int
    agreed: bool
    winner: str | None = None


def tally_votes(votes: list[Vote], expected_voters: int | None = None) -> VotingResult:
    """Pick the option with the highest confidence x weight score.

    Ties keep the option that was voted for first. With no votes, or only
    zero-confidence votes, the winner is ``"none"``.
    """

    expected = len(votes) if expected_voters is None else expected_voters
    if not votes:
        return VotingResult(
            winner="none",
            consensus=False,
            total_confidence=0.0,
            expected_voters=expected,
            reasoning_summary="No votes received",
        )

    scores: dict[str, float] = {}
    weights: dict[str, float] = {}
    for vote in votes:
        scores[vote.choice] = scores.get(vote.choice, 0.0) + vote.confidence * vote.weight
        weights[vote.choice] = weights.get(vote.choice, 0.0) + vote.weight

    winner = "none"
    best = 0.0
    for choice, score in scores.items():
        if score > best:
            best = score
            winner = choice

    total_weight = sum(v.weight for v in votes)
    consensus = weights.get(winner, 0.0) / total_weight > CONSENSUS_THRESHOLD
    summary = "; ".join(f"{v.agent_name}: {v.reasoning}" for v in votes if v.choice == winner)
    return VotingResult(
        winner=winner,
        consensus=consensus,
        total_confidence=best,
        votes=list(votes),
        expected_voters=expected,
        reasoning_summary=summary,
    )
