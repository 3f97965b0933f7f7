from __future__ import annotations

from dataclasses import dataclass

from blockfraud.domain.errors import AlreadyVoting, InvalidState
from blockfraud.domain.states import ALLOWED_TRANSITIONS, DisputeStatus, Resolution


@dataclass(frozen=True)
class DisputePolicy:
    """Voting rules applied by the dispute lifecycle.

    min_evidence: evidence items required before voting may start.
    quorum: total votes required before ``resolve`` succeeds without ``force``.
    auto_start_voting: open voting as soon as ``min_evidence`` is reached.
    auto_resolve: resolve as soon as a vote brings the total to ``quorum``.

    Ties always resolve to ``rejected``.
    """

    min_evidence: int = 0
    quorum: int = 1
    auto_start_voting: bool = False
    auto_resolve: bool = False

    def __post_init__(self) -> None:
        if self.min_evidence < 0 or self.quorum < 0:
            raise ValueError("min_evidence and quorum must be non-negative")

    @classmethod
    def from_settings(cls, settings) -> "DisputePolicy":
        return cls(
            min_evidence=settings.dispute_min_evidence,
            quorum=settings.dispute_quorum,
            auto_start_voting=settings.dispute_auto_start_voting,
            auto_resolve=settings.dispute_auto_resolve,
        )

    def quorum_met(self, votes_for: int, votes_against: int) -> bool:
        return votes_for + votes_against >= self.quorum


def derive_resolution(votes_for: int, votes_against: int) -> Resolution:
    if votes_for > votes_against:
        return Resolution.APPROVED
    return Resolution.REJECTED


class StateMachine:
    def transition(self, current: DisputeStatus, target: DisputeStatus) -> DisputeStatus:
        if current == target == DisputeStatus.VOTING:
            raise AlreadyVoting("Dispute is already in voting")

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidState(f"Invalid transition {current.value} -> {target.value}")
        return target
