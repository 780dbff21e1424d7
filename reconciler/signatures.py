TRANSFER = 'Transfer(address,address,uint256)'

VOTE_CAST = 'VoteCast(uint256,address,uint8,uint256)'
PROPOSAL_EVENT = 'ProposalEvent(uint256,uint8,address,bytes)'

# ProposalEvent.eventType values.
PROPOSAL_EVENT_CREATED = 0

# ProposalEvent(created).data
PROPOSAL_CREATED_DATA_TYPES = ['uint8', 'uint256'] # (proposalType, snapshotId)

# VoteCast.support values.
AGAINST = 0
FOR = 1
ABSTAIN = 2

VOTE_CHOICES = (AGAINST, FOR, ABSTAIN)
