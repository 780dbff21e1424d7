import pytest

from reconciler.clients_indexer import EtherscanClient
from reconciler.config import (ReconcilerSettings, SeededDefaults, load_config, get_deployment, get_settings,
                               resolve_rpc_url, resolve_account, resolve_indexer_api_key)
from reconciler.engine import GovernanceEngine

CONFIG_FILE = 'tests/test_config.yaml'


def test_settings_defaults():

    settings = ReconcilerSettings.from_dict(None)

    assert settings.proposal_id_upper_bound == 1000
    assert settings.balance_batch_width == 10
    assert not settings.allow_revote
    assert settings.defaults == SeededDefaults()
    assert settings.defaults.participation_rate == 0.27


def test_settings_reject_bad_values():

    with pytest.raises(ValueError):
        ReconcilerSettings.from_dict({'proposal_id_upperbound': 10})

    with pytest.raises(ValueError):
        ReconcilerSettings.from_dict({'defaults': {'holderz': 1}})

    with pytest.raises(ValueError):
        ReconcilerSettings.from_dict({'proposal_id_upper_bound': -1})

    with pytest.raises(ValueError):
        ReconcilerSettings.from_dict({'balance_batch_width': 0})


def test_load_config_and_deployments():

    config = load_config(CONFIG_FILE)

    main = get_deployment(config, 'main')
    assert main['chain_id'] == 11155111
    assert main['start_block'] == 5000000
    assert main['analytics']['address'] == '0x3333333333333333333333333333333333333333'

    bare = get_deployment(config, 'bare')
    assert bare['start_block'] == 0
    assert 'analytics' not in bare

    with pytest.raises(ValueError):
        get_deployment(config, 'broken')

    with pytest.raises(ValueError):
        get_deployment(config, 'nowhere')

    settings = get_settings(config)
    assert settings.proposal_id_upper_bound == 200
    assert settings.balance_batch_width == 5
    assert settings.defaults.holders == 7
    assert settings.defaults.delegation_rate == 0.38


def test_resolve_rpc_url(monkeypatch):

    monkeypatch.delenv('DAO_RECON_NODE_HTTP', raising=False)
    assert resolve_rpc_url() is None

    monkeypatch.setenv('DAO_RECON_NODE_HTTP', 'http://localhost:8545')
    assert resolve_rpc_url() == 'http://localhost:8545'

    monkeypatch.setenv('DAO_RECON_NODE_HTTP', 'https://eth-sepolia.g.alchemy.com/v2/')
    monkeypatch.setenv('ALCHEMY_API_KEY', 'abc123')
    assert resolve_rpc_url() == 'https://eth-sepolia.g.alchemy.com/v2/abc123'


def test_resolve_secrets(monkeypatch):

    monkeypatch.setenv('DAO_RECON_ACCOUNT', '')
    monkeypatch.setenv('ETHERSCAN_API_KEY', '')
    assert resolve_account() is None
    assert resolve_indexer_api_key() is None

    monkeypatch.setenv('DAO_RECON_ACCOUNT', '0x00000000000000000000000000000000000000a1')
    monkeypatch.setenv('ETHERSCAN_API_KEY', 'k3y')
    assert resolve_account() == '0x00000000000000000000000000000000000000a1'
    assert resolve_indexer_api_key() == 'k3y'


@pytest.mark.asyncio
async def test_engine_from_config(monkeypatch):

    monkeypatch.setenv('DAO_RECON_NODE_HTTP', 'http://localhost:8545')
    monkeypatch.setenv('ETHERSCAN_API_KEY', 'k3y')
    monkeypatch.delenv('DAO_RECON_ACCOUNT', raising=False)

    engine = GovernanceEngine.from_config(CONFIG_FILE, 'main')

    assert engine.account is None
    assert engine.fetcher.start_block == 5000000
    assert engine.fetcher.chain_id == 11155111
    assert isinstance(engine.indexer, EtherscanClient)
    assert engine.ledger.analytics is not None
    assert not engine.ledger.has_count_accessor
    assert engine.discoverer.upper_bound == 200
    assert '0x3333333333333333333333333333333333333333' in engine.enumerator.extra_addresses
    assert '0x4444444444444444444444444444444444444444' in engine.enumerator.extra_addresses

    await engine.teardown()


def test_engine_needs_a_node(monkeypatch):

    monkeypatch.delenv('DAO_RECON_NODE_HTTP', raising=False)

    with pytest.raises(ValueError):
        GovernanceEngine.from_config(CONFIG_FILE, 'main')
