from unittest.mock import AsyncMock

import pytest
from eth_abi import encode as encode_abi
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3

from reconciler.clients import load_abi, load_event_abis
from reconciler.clients_httpjson import EventLogCaster, EventLogFetcher, resolve_block_count_span
from reconciler.clients_indexer import EtherscanClient, INDEXER_BASE_URLS, resolve_indexer_base_url
from reconciler.errors import DecodeError, UpstreamUnavailable
from reconciler.signatures import VOTE_CAST, PROPOSAL_EVENT, TRANSFER

from conftest import FakeLedger, GOV, ALICE, BOB

"""

Example of an object seen by caster_fn from HTTP:

AttributeDict({'address': '0x...',
               'topics': [HexBytes('0x...'), HexBytes('0x...'), HexBytes('0x...')],
               'data': HexBytes('0x...'),
               'blockNumber': 15778592,
               'transactionHash': HexBytes('0x...'),
               'transactionIndex': 0,
               'blockHash': HexBytes('0x...'),
               'logIndex': 1,
               'removed': False})
"""

def vote_cast_log(proposal_id, voter, support, weight, block_number, log_index=0, data=None):
    topics = [HexBytes(keccak(text=VOTE_CAST)),
              HexBytes(encode_abi(['uint256'], [proposal_id])),
              HexBytes(encode_abi(['address'], [voter]))]

    if data is None:
        data = encode_abi(['uint8', 'uint256'], [support, weight])

    return {'address': Web3.to_checksum_address(GOV),
            'topics': topics,
            'data': HexBytes(data),
            'blockNumber': block_number,
            'transactionHash': HexBytes('0x' + '11' * 32),
            'transactionIndex': 0,
            'blockHash': HexBytes('0x' + '22' * 32),
            'logIndex': log_index,
            'removed': False}


@pytest.fixture(scope="session")
def event_abis():
    return load_event_abis()


def test_abis_ship_with_the_package():

    names = {frag.get('name') for frag in load_abi('governance')}
    assert {'getProposalState', 'proposalVoterInfo', 'castVote', 'VoteCast', 'ProposalEvent'} <= names
    assert 'getProposalCount' not in names

    names = {frag.get('name') for frag in load_abi('analytics_helper')}
    assert 'calculateGovernanceHealthScore' in names


def test_event_abis_resolve_by_signature(event_abis):
    for signature in (VOTE_CAST, PROPOSAL_EVENT, TRANSFER):
        assert event_abis.get_by_signature(signature) is not None


def test_vote_cast_caster(event_abis):

    caster_fn = EventLogCaster(event_abis).lookup(VOTE_CAST)

    out = caster_fn(vote_cast_log(7, ALICE, 1, 100, 10))

    assert out == {'proposal_id': 7, 'voter': ALICE, 'support': 1, 'voting_power': 100}


def test_caster_raises_decode_error_on_garbage(event_abis):

    caster_fn = EventLogCaster(event_abis).lookup(VOTE_CAST)

    with pytest.raises(DecodeError):
        caster_fn(vote_cast_log(7, ALICE, 1, 100, 10, data=b'\x01'))


def test_build_topics(event_abis):

    fetcher = EventLogFetcher(FakeLedger(), event_abis)

    topic0 = "0x" + keccak(text=VOTE_CAST).hex()
    pid7 = "0x" + encode_abi(['uint256'], [7]).hex()
    bob = "0x" + encode_abi(['address'], [BOB]).hex()

    assert fetcher.build_topics(VOTE_CAST) == [topic0]
    assert fetcher.build_topics(VOTE_CAST, {'proposalId': 7}) == [topic0, pid7]
    assert fetcher.build_topics(VOTE_CAST, {'voter': BOB}) == [topic0, None, bob]


@pytest.mark.asyncio
async def test_fetch_pages_dedupes_and_orders(event_abis, monkeypatch):

    monkeypatch.setenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', '100')

    ledger = FakeLedger()
    ledger.head = 250

    duplicate = vote_cast_log(7, ALICE, 1, 100, 10, log_index=2)

    ledger.logs = [vote_cast_log(7, BOB, 0, 50, 250, log_index=1),
                   duplicate,
                   vote_cast_log(7, BOB, 0, 50, 150, log_index=0),
                   dict(duplicate),
                   vote_cast_log(7, ALICE, 1, 100, 200, data=b'\x01')]

    fetcher = EventLogFetcher(ledger, event_abis, chain_id=11155111)

    events = await fetcher.fetch(GOV, VOTE_CAST, indexed={'proposalId': 7})

    assert ledger.log_ranges == [(0, 99), (100, 199), (200, 250)]
    assert [e['block_number'] for e in events] == [10, 150, 250]
    assert events[0]['voter'] == ALICE
    assert events[0]['log_index'] == 2
    assert events[0]['signature'] == VOTE_CAST


@pytest.mark.asyncio
async def test_fetch_respects_explicit_range(event_abis, monkeypatch):

    monkeypatch.setenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', '1000')

    ledger = FakeLedger()
    ledger.logs = [vote_cast_log(7, ALICE, 1, 100, 10), vote_cast_log(7, BOB, 1, 100, 500)]

    events = await EventLogFetcher(ledger, event_abis).fetch(GOV, VOTE_CAST, from_block=100, to_block=600)

    assert ledger.log_ranges == [(100, 600)]
    assert [e['block_number'] for e in events] == [500]


def test_resolve_block_count_span(monkeypatch):

    monkeypatch.delenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', raising=False)

    assert resolve_block_count_span(None) == 2000
    assert resolve_block_count_span(1) == 2000
    assert resolve_block_count_span(10) == 12000
    assert resolve_block_count_span(42161) == 96000

    monkeypatch.setenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', 'nonsense')
    assert resolve_block_count_span(1) == 2000

    monkeypatch.setenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', '50')
    assert resolve_block_count_span(1) == 50


def test_indexer_base_url():
    assert resolve_indexer_base_url(11155111) == "https://api-sepolia.etherscan.io/api"
    assert resolve_indexer_base_url(42161) == "https://api.arbiscan.io/api"
    assert resolve_indexer_base_url(999) == INDEXER_BASE_URLS[1]


@pytest.mark.asyncio
async def test_indexer_without_key_is_unavailable():

    async with EtherscanClient(None, 1) as client:
        with pytest.raises(UpstreamUnavailable):
            await client.token_holder_list('0x2222222222222222222222222222222222222222')


@pytest.mark.asyncio
async def test_indexer_parses_holders():

    client = EtherscanClient('k3y', 1)

    client.get = AsyncMock(return_value=[{'TokenHolderAddress': ALICE.upper().replace('0X', '0x'), 'TokenHolderQuantity': '5'},
                                         {'TokenHolderAddress': BOB, 'TokenHolderQuantity': '1'}])
    assert await client.token_holder_list('0x2222222222222222222222222222222222222222') == [ALICE, BOB]

    client.get = AsyncMock(return_value=[{'tokenName': 'Gov', 'holdersCount': ''}, {'holderCount': '0x10'}])
    assert await client.token_info('0x2222222222222222222222222222222222222222') == {'holder_count': 16}

    client.get = AsyncMock(return_value=[{'tokenName': 'Gov'}])
    with pytest.raises(UpstreamUnavailable):
        await client.token_info('0x2222222222222222222222222222222222222222')

    await client.close()
