from dotenv import load_dotenv

load_dotenv()

import os
from dataclasses import dataclass, field, fields

import yaml

from .logsetup import get_logger
from .utils import secret_text

glogr = get_logger('config')

DAO_RECON_CONFIG_FILE = os.getenv('DAO_RECON_CONFIG_FILE', './config.yaml')
CONTRACT_DEPLOYMENT = os.getenv('CONTRACT_DEPLOYMENT', 'main')


@dataclass
class SeededDefaults:
    holders: int = 4
    participation_rate: float = 0.27
    delegation_rate: float = 0.38
    proposal_success_rate: float = 0.73
    treasury_balance: int = 0
    snapshot_id: int = 0


@dataclass
class ReconcilerSettings:
    proposal_id_upper_bound: int = 1000
    holder_scan_window: int = 100_000
    balance_batch_width: int = 10
    vote_gas_limit: int = 300_000
    receipt_timeout: float = 120
    allow_revote: bool = False
    recent_proposal_window: int = 10
    analytics_proposal_range: int = 100
    defaults: SeededDefaults = field(default_factory=SeededDefaults)

    @classmethod
    def from_dict(cls, raw):

        raw = dict(raw or {})

        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown reconciler settings: {sorted(unknown)}")

        defaults = raw.pop('defaults', None) or {}

        known_defaults = {f.name for f in fields(SeededDefaults)}
        unknown = set(defaults) - known_defaults
        if unknown:
            raise ValueError(f"Unknown seeded defaults: {sorted(unknown)}")

        settings = cls(defaults=SeededDefaults(**defaults), **raw)

        if settings.proposal_id_upper_bound < 0:
            raise ValueError("proposal_id_upper_bound must be >= 0")
        if settings.balance_batch_width < 1:
            raise ValueError("balance_batch_width must be >= 1")

        return settings


def load_config(config_file=None):

    config_file = config_file or DAO_RECON_CONFIG_FILE

    glogr.info(f"Loading config from {config_file}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f)

    return config


def get_deployment(config, name=None):

    name = name or CONTRACT_DEPLOYMENT

    try:
        deployment = config['deployments'][name]
    except KeyError:
        raise ValueError(f"No deployment named '{name}' in config")

    for contract in ('gov', 'token'):
        if not deployment.get(contract, {}).get('address'):
            raise ValueError(f"Deployment '{name}' is missing a {contract} address")

    deployment.setdefault('start_block', 0)

    return deployment


def get_settings(config):
    return ReconcilerSettings.from_dict(config.get('reconciler'))


def resolve_rpc_url():

    # This pattern enables a deployer to put either the base URL in plain text or the full URL in
    # plain text, leaving ALCHEMY_API_KEY in an optional secret.

    url = os.getenv('DAO_RECON_NODE_HTTP', None)

    if not url:
        return None

    if 'alchemy.com' in url:
        url = url + os.getenv('ALCHEMY_API_KEY', '')
        glogr.info(f"Using alchemy: {secret_text(url, 6)}")

    if 'quiknode.pro' in url:
        url = url + os.getenv('QUICKNODE_API_KEY', '')
        glogr.info(f"Using quiknode.pro: {secret_text(url, 6)}")

    return url


def resolve_account():
    return os.getenv('DAO_RECON_ACCOUNT', None) or None


def resolve_indexer_api_key():
    return os.getenv('ETHERSCAN_API_KEY', None) or None
