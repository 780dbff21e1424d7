"""
Everything the engine raises derives from ReconcilerError.

Validation errors (NotConnected, ValidationError, InactiveProposal, AlreadyVoted,
NoVotingPower) are raised before anything is written to the ledger.  DecodeError
and UpstreamUnavailable are what a fallback chain treats as "try the next source".
"""

class ReconcilerError(Exception):
    pass

class NotConnected(ReconcilerError):
    pass

class NotFound(ReconcilerError):
    pass

class ValidationError(ReconcilerError):
    pass

class InactiveProposal(ReconcilerError):
    pass

class AlreadyVoted(ReconcilerError):
    pass

class NoVotingPower(ReconcilerError):
    pass

class DecodeError(ReconcilerError):
    pass

class UpstreamUnavailable(ReconcilerError):
    pass
