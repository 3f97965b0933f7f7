from __future__ import annotations


class BlockFraudError(Exception):
    """Base class for errors surfaced by the dispute and analysis services."""


class InvalidState(BlockFraudError):
    """The action is not legal in the dispute's (or transaction's) current state."""


class AlreadyVoting(InvalidState):
    pass


class DuplicateVote(BlockFraudError):
    def __init__(self, dispute_id: str, voter_id: str) -> None:
        super().__init__(f"Voter {voter_id} already voted on dispute {dispute_id}")
        self.dispute_id = dispute_id
        self.voter_id = voter_id


class QuorumNotMet(BlockFraudError):
    def __init__(self, dispute_id: str, total_votes: int, quorum: int) -> None:
        super().__init__(f"Dispute {dispute_id} has {total_votes} vote(s), quorum is {quorum}")
        self.dispute_id = dispute_id
        self.total_votes = total_votes
        self.quorum = quorum


class NotFound(BlockFraudError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ValidationError(BlockFraudError, ValueError):
    pass


class OracleUnavailable(BlockFraudError):
    """Scoring oracle failed: transport error, timeout, or malformed payload."""
