"""Exception types for the committee pipeline."""


class CommitteeError(Exception):
    """Base class for all committee errors."""


class ValidationError(CommitteeError):
    """Raised for malformed configuration or input, before any external call."""


class RaterFailure(CommitteeError):
    """A single proposer attempt or judge round failed. Logged and skipped."""

    def __init__(self, rater_id: str, message: str) -> None:
        self.rater_id = rater_id
        super().__init__(f"[{rater_id}] {message}")


class InsufficientProposals(CommitteeError):
    """Fewer proposals survived than the configured minimum."""

    def __init__(self, received: int, required: int) -> None:
        self.received = received
        self.required = required
        super().__init__(f"Insufficient proposals generated: {received} < {required}")


class JudgeParseFailure(CommitteeError):
    """A judge response could not be parsed. Converted to a neutral tie."""


class SynthesisFailure(CommitteeError):
    """Consensus arithmetic failed unexpectedly."""


class JuryDeliberationFailure(CommitteeError):
    """Jury evaluation failed. Converted to an UNDECIDED result."""


class DeliberationInProgress(CommitteeError):
    """The coordinator rejected the run (in flight or cooling down)."""

    def __init__(self, subject_id: str) -> None:
        self.subject_id = subject_id
        super().__init__(f"Deliberation for {subject_id} is in progress or cooling down")


class DeliberationTimeout(CommitteeError):
    """The overall deliberation exceeded its time limit."""
