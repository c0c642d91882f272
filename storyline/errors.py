from __future__ import annotations


class StorylineError(RuntimeError):
    """Base class for engine failures. All are local and never retried."""


class NotFoundError(StorylineError):
    """Unknown tree, node, branch, narrative, section, session or ending id."""


class InvalidStateError(StorylineError):
    """Operation invoked against a session in the wrong lifecycle state."""


class BranchUnavailableError(InvalidStateError):
    """The branch exists but is not currently offered from the session's node."""


class UnknownConditionError(StorylineError):
    """Condition kind the evaluator has no rule for."""


class NoEligibleEndingError(StorylineError):
    """No candidate scored non-negative and no common ending exists to fall back to."""


class ContentError(StorylineError):
    """Authored content violates a structural invariant."""
