"""Per-session agent orchestrator.

Owns the registered agents of one session and drives them over the
session bus: sequential pipelines, isolated parallel rounds, weighted
votes with a deadline, and bounded multi-round negotiation.
"""

import asyncio
import logging
from collections import Counter
from typing import Any

from .agents.base import ActionResult, BaseAgent, Perception
from .bus import BROADCAST, ORCHESTRATOR, Message, MessageBus, MessageKind, Priority
from .collector import InteractionLogCollector
from .config import settings
from .consensus import CONSENSUS_THRESHOLD, NegotiationResult, Vote, VotingResult, tally_votes
from .models import SessionState
from .payloads import NegotiationReview, TaskName, TaskRequest, VoteCast
from .utils import new_id

logger = logging.getLogger(__name__)


class _Ballot:
    """Rendezvous for one vote: collects casts and fires when all are in."""

    def __init__(self, expected: set[str]) -> None:
        self.expected = expected
        self.votes: dict[str, Vote] = {}
        self.done = asyncio.Event()


class Orchestrator:
    """Explicit per-session coordinator; there is no global instance."""

    def __init__(self, bus: MessageBus | None = None, collector: InteractionLogCollector | None = None) -> None:
        self.bus = bus or MessageBus()
        self.collector = collector or InteractionLogCollector()
        self._agents: dict[str, BaseAgent] = {}
        self._ballots: dict[str, _Ballot] = {}
        self._reviews: dict[tuple[str, int, str], NegotiationReview] = {}
        self.bus.add_listener(self.collector.record)
        self.bus.add_listener(self._on_message)

    def register(self, agent: BaseAgent) -> None:
        if agent.name in self._agents:
            raise ValueError(f"Agent '{agent.name}' is already registered")
        if agent.bus is not self.bus:
            raise ValueError(f"Agent '{agent.name}' is bound to another bus")
        self.bus.register(agent.name, agent.profile.expertise)
        self._agents[agent.name] = agent
        logger.info("Registered agent %s (%s)", agent.name, agent.profile.role)

    def unregister(self, name: str) -> None:
        self._agents.pop(name, None)
        self.bus.unregister(name)

    @property
    def agents(self) -> list[str]:
        return list(self._agents)

    def get(self, name: str) -> BaseAgent | None:
        return self._agents.get(name)

    def send(
        self,
        recipient: str,
        kind: MessageKind | str,
        payload: Any,
        *,
        sender: str = ORCHESTRATOR,
        priority: Priority | str = Priority.medium,
        requires_response: bool = False,
        in_reply_to: str | None = None,
    ) -> Message:
        return self.bus.publish(
            sender,
            recipient,
            kind,
            payload,
            priority=priority,
            requires_response=requires_response,
            in_reply_to=in_reply_to,
        )

    def broadcast(self, payload: Any, *, sender: str = ORCHESTRATOR, priority: Priority | str = Priority.medium) -> Message:
        return self.send(BROADCAST, MessageKind.broadcast, payload, sender=sender, priority=priority)

    def request_task(self, agent_name: str, task: TaskName, context: dict[str, Any] | None = None) -> Message:
        return self.send(
            agent_name,
            MessageKind.request,
            TaskRequest(task=task, context=context or {}),
            priority=Priority.high,
            requires_response=True,
        )

    async def run_agent(
        self,
        name: str,
        state: SessionState | None,
        context: dict[str, Any] | None = None,
    ) -> ActionResult | None:
        agent = self._agents.get(name)
        if agent is None:
            logger.warning("Agent not found: %s", name)
            return None
        perception = Perception(state=state, messages=self.bus.drain(name), context=dict(context or {}))
        return await agent.run(perception)

    async def run_pipeline(
        self,
        agent_names: list[str],
        state: SessionState | None,
        context: dict[str, Any] | None = None,
        tasks: dict[str, tuple[TaskName, dict[str, Any]]] | None = None,
    ) -> dict[str, ActionResult | None]:
        """Run agents one full cycle at a time, threading earlier outputs forward.

        ``tasks`` maps an agent name to a request issued just before that
        agent runs. Any agent whose output sets ``stop_pipeline`` ends the
        pipeline early.
        """

        results: dict[str, ActionResult | None] = {}
        for name in agent_names:
            enriched = {
                **(context or {}),
                "previous_results": {k: v.output for k, v in results.items() if v is not None},
            }
            if tasks and name in tasks:
                task, task_context = tasks[name]
                self.request_task(name, task, task_context)
            result = await self.run_agent(name, state, enriched)
            results[name] = result
            if result is not None and result.stop_pipeline:
                logger.info("Pipeline stopped by %s", name)
                self.collector.log_system(f"Pipeline stopped by {name}")
                break
        return results

    async def run_round(
        self,
        state: SessionState | None,
        context: dict[str, Any] | None = None,
        agent_names: list[str] | None = None,
    ) -> dict[str, ActionResult | None]:
        """Run agents concurrently; their messages land only after the round."""

        names = agent_names or list(self._agents)
        with self.bus.isolated_round():
            outcomes = await asyncio.gather(*(self.run_agent(name, state, context) for name in names))
        return dict(zip(names, outcomes))

    async def request_vote(
        self,
        question: str,
        options: list[str],
        context: dict[str, Any] | None = None,
        *,
        state: SessionState | None = None,
        initiator: str = ORCHESTRATOR,
        timeout_ms: int | None = None,
    ) -> VotingResult:
        """Collect weighted votes until every agent voted or the deadline passes."""

        timeout = (timeout_ms if timeout_ms is not None else settings.vote_timeout_ms) / 1000
        vote_id = new_id("vote")
        ballot = _Ballot(set(self._agents) - {initiator})
        self._ballots[vote_id] = ballot
        if not ballot.expected:
            ballot.done.set()
        try:
            self.send(
                BROADCAST,
                MessageKind.vote,
                {"topic": "vote_request", "vote_id": vote_id, "question": question, "options": options, "context": context or {}},
                sender=initiator,
                priority=Priority.high,
            )
            voting = asyncio.create_task(self.run_round(state, {"vote_id": vote_id}))
            try:
                await asyncio.wait_for(ballot.done.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Vote %s timed out with %s/%s votes", vote_id, len(ballot.votes), len(ballot.expected)
                )
                voting.cancel()
                await asyncio.wait({voting})
            else:
                await voting
        finally:
            self._ballots.pop(vote_id, None)

        result = tally_votes(list(ballot.votes.values()), expected_voters=len(ballot.expected))
        logger.info(
            "Vote %s winner=%s consensus=%s votes=%s/%s",
            vote_id,
            result.winner,
            result.consensus,
            len(result.votes),
            result.expected_voters,
        )
        self.collector.log_system(
            f"Vote result: {result.winner}",
            {"question": question, "consensus": result.consensus, "votes": len(result.votes)},
        )
        return result

    async def negotiate(
        self,
        participants: list[str],
        subject: str,
        proposals: dict[str, dict[str, Any]],
        *,
        state: SessionState | None = None,
        max_rounds: int | None = None,
    ) -> NegotiationResult:
        """Iterate proposal reviews until enough participants agree.

        Consensus needs agreement from at least 70% of participants; the
        winner is the most preferred proposal. After ``max_rounds`` the
        first current proposal is returned with ``agreed=False``.
        """

        if not proposals:
            raise ValueError("Negotiation needs at least one proposal")
        rounds_allowed = max_rounds if max_rounds is not None else settings.negotiation_max_rounds
        if rounds_allowed < 1:
            raise ValueError("max_rounds must be at least 1")

        negotiation_id = new_id("neg")
        current = dict(proposals)
        self.collector.log_system(
            f"Negotiation started: {subject}",
            {"participants": participants, "max_rounds": rounds_allowed, "proposals": len(current)},
        )
        for round_no in range(1, rounds_allowed + 1):
            authors = list(current)
            listing = [{"author": author, "proposal": current[author]} for author in authors]
            reviews: dict[str, NegotiationReview] = {}
            for name in participants:
                if name not in self._agents:
                    logger.warning("Negotiation participant %s is not registered", name)
                    continue
                self.send(
                    name,
                    MessageKind.negotiation,
                    {
                        "topic": "negotiation_round",
                        "negotiation_id": negotiation_id,
                        "subject": subject,
                        "round": round_no,
                        "proposals": listing,
                    },
                    priority=Priority.high,
                    requires_response=True,
                )
                await self.run_agent(name, state, {"negotiation_round": round_no})
                review = self._reviews.pop((negotiation_id, round_no, name), None)
                if review is not None:
                    reviews[name] = review

            agreements = sum(1 for r in reviews.values() if r.agrees)
            if agreements >= len(participants) * CONSENSUS_THRESHOLD:
                preferred = Counter(
                    authors[r.preferred_proposal] for r in reviews.values() if r.preferred_proposal < len(authors)
                )
                winner = preferred.most_common(1)[0][0] if preferred else authors[0]
                logger.info("Negotiation %s reached consensus on %s in round %s", negotiation_id, winner, round_no)
                self.collector.log_system(
                    f"Consensus reached: {winner}",
                    {"round": round_no, "agreements": agreements, "total": len(participants)},
                )
                return NegotiationResult(consensus=current[winner], rounds=round_no, agreed=True, winner=winner)

            for name, review in reviews.items():
                if review.revised_proposal is not None:
                    current[name] = review.revised_proposal

        fallback = next(iter(current))
        logger.info("Negotiation %s ended without consensus after %s rounds", negotiation_id, rounds_allowed)
        self.collector.log_system(f"No consensus on {subject}, using first proposal", {"rounds": rounds_allowed})
        return NegotiationResult(consensus=current[fallback], rounds=rounds_allowed, agreed=False, winner=fallback)

    def _on_message(self, message: Message) -> None:
        payload = message.payload
        if isinstance(payload, NegotiationReview):
            self._reviews[(payload.negotiation_id, payload.round, message.sender)] = payload
            return
        if not isinstance(payload, VoteCast):
            return
        ballot = self._ballots.get(payload.vote_id)
        if ballot is None:
            logger.warning("Dropping vote from %s for closed vote %s", message.sender, payload.vote_id)
            return
        if message.sender not in ballot.expected or message.sender in ballot.votes:
            logger.warning("Ignoring vote from %s on %s", message.sender, payload.vote_id)
            return
        agent = self._agents.get(message.sender)
        if agent is None:
            logger.warning("Dropping vote from %s: agent is no longer registered", message.sender)
            return
        ballot.votes[message.sender] = Vote(
            agent_name=message.sender,
            choice=payload.choice,
            confidence=payload.confidence,
            weight=agent.profile.voting_weight,
            reasoning=payload.reasoning,
        )
        if len(ballot.votes) == len(ballot.expected):
            ballot.done.set()

    def history(self, limit: int = 50) -> list[Message]:
        return self.bus.history(limit)

    def reset(self) -> None:
        self.bus.reset()
        self._ballots.clear()
        self._reviews.clear()
        logger.info("Orchestrator reset")
