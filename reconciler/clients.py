import os
import json
from pathlib import Path

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, BadFunctionCallOutput, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware
from abifsm import ABI, ABISet
from sanic.log import logger as logr

from .abcs import LedgerClient
from .errors import NotFound, NotConnected, UpstreamUnavailable
from .normalize import to_int

ABI_PATH = Path(__file__).parent / 'abis'

DAO_RECON_USE_POA_MIDDLEWARE = os.getenv('DAO_RECON_USE_POA_MIDDLEWARE', "false").lower() in ('true', '1')

def load_abi(name):
    with open(ABI_PATH / f"{name}.json", "r") as f:
        return json.load(f)

def load_event_abis():
    """Event fragments for every contract the engine reads logs from."""

    gov_abi = ABI.from_file('gov', str(ABI_PATH / 'governance.json'))
    token_abi = ABI.from_file('token', str(ABI_PATH / 'token.json'))

    return ABISet('reconciler', [gov_abi, token_abi])


class Web3LedgerClient(LedgerClient):

    def __init__(self, url, deployment, account=None, request_timeout=30):
        self.url = url
        self.request_timeout = request_timeout
        self.account = Web3.to_checksum_address(account) if account else None

        self.w3 = self.connect()

        self.gov_address = Web3.to_checksum_address(deployment['gov']['address'])
        self.token_address = Web3.to_checksum_address(deployment['token']['address'])

        self.gov = self.w3.eth.contract(address=self.gov_address, abi=load_abi('governance'))
        self.token = self.w3.eth.contract(address=self.token_address, abi=load_abi('token'))

        self.analytics = None
        if deployment.get('analytics', {}).get('address'):
            analytics_address = Web3.to_checksum_address(deployment['analytics']['address'])
            self.analytics = self.w3.eth.contract(address=analytics_address,
                                                  abi=load_abi('analytics_helper'),
                                                  decode_tuples=True)

        self.has_count_accessor = any(frag.get('name') == 'getProposalCount' for frag in self.gov.abi)

    def connect(self):

        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.url, request_kwargs={'timeout': self.request_timeout}))

        if DAO_RECON_USE_POA_MIDDLEWARE:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        return w3

    async def is_valid(self):

        if self.url in ('', 'ignored', None):
            ans = False
        else:
            ans = await self.w3.is_connected()

        if ans:
            logr.info(f"The server '{self.url}' is valid.")
        else:
            logr.warning(f"The server '{self.url}' is not valid.")

        return ans

    async def _call(self, contract_fn, label, missing_means_not_found=False):

        try:
            return await contract_fn.call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            if missing_means_not_found:
                raise NotFound(f"{label}: {e}") from e
            raise UpstreamUnavailable(f"E120191026 - {label} reverted: {e}") from e
        except Exception as e:
            raise UpstreamUnavailable(f"E121191026 - {label} failed: {e}") from e

    def _require_analytics(self):
        if self.analytics is None:
            raise UpstreamUnavailable("No analytics helper in this deployment.")
        return self.analytics

    #################################################################################
    # Governance

    async def get_proposal_state(self, proposal_id):
        return await self._call(self.gov.functions.getProposalState(proposal_id),
                                f"getProposalState({proposal_id})",
                                missing_means_not_found=True)

    async def get_proposal_count(self):

        if not self.has_count_accessor:
            return None

        return await self._call(self.gov.functions.getProposalCount(), "getProposalCount()")

    async def proposal_voter_info(self, proposal_id, account):
        return await self._call(self.gov.functions.proposalVoterInfo(proposal_id, Web3.to_checksum_address(account)),
                                f"proposalVoterInfo({proposal_id})")

    #################################################################################
    # Token

    async def get_current_snapshot_id(self):
        return await self._call(self.token.functions.getCurrentSnapshotId(), "getCurrentSnapshotId()")

    async def get_effective_voting_power(self, account, snapshot_id):
        return await self._call(self.token.functions.getEffectiveVotingPower(Web3.to_checksum_address(account), snapshot_id),
                                f"getEffectiveVotingPower({snapshot_id})")

    async def get_snapshot_metrics(self, snapshot_id):
        return await self._call(self.token.functions.getSnapshotMetrics(snapshot_id),
                                f"getSnapshotMetrics({snapshot_id})")

    async def total_supply(self):
        return await self._call(self.token.functions.totalSupply(), "totalSupply()")

    async def balance_of(self, address):
        return await self._call(self.token.functions.balanceOf(Web3.to_checksum_address(address)),
                                "balanceOf()")

    #################################################################################
    # Analytics Helper

    async def get_proposal_analytics(self, start_id=0, end_id=100):
        return await self._call(self._require_analytics().functions.getProposalAnalytics(start_id, end_id),
                                "getProposalAnalytics()")

    async def get_token_distribution_analytics(self):
        return await self._call(self._require_analytics().functions.getTokenDistributionAnalytics(),
                                "getTokenDistributionAnalytics()")

    async def get_voter_behavior_analytics(self, voter_limit=100):
        return await self._call(self._require_analytics().functions.getVoterBehaviorAnalytics(voter_limit),
                                "getVoterBehaviorAnalytics()")

    async def get_timelock_analytics(self, transaction_limit=100):
        return await self._call(self._require_analytics().functions.getTimelockAnalytics(transaction_limit),
                                "getTimelockAnalytics()")

    async def calculate_governance_health_score(self):
        return await self._call(self._require_analytics().functions.calculateGovernanceHealthScore(),
                                "calculateGovernanceHealthScore()")

    #################################################################################
    # Chain

    async def block_number(self):
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise UpstreamUnavailable(f"E122191026 - block_number failed: {e}") from e

    async def get_logs(self, address, topics, from_block, to_block):

        event_filter = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": Web3.to_checksum_address(address),
            "topics": topics
        }

        try:
            return await self.w3.eth.get_logs(event_filter)
        except Exception as e:
            logr.error(f"Failed to get logs: {e} {event_filter}")
            raise UpstreamUnavailable(f"E123191026 - get_logs failed: {e}") from e

    async def submit_vote(self, proposal_id, support, gas_limit):

        if not self.account:
            raise NotConnected("No account to vote from.")

        tx_hash = await self.gov.functions.castVote(proposal_id, support).transact({'from': self.account,
                                                                                   'gas': gas_limit})
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash, timeout):

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise UpstreamUnavailable(f"E124191026 - No receipt for {tx_hash} after {timeout}s") from e

        return {'status': to_int(receipt['status']),
                'block_number': to_int(receipt['blockNumber']),
                'tx_hash': tx_hash}
