# yieldrelay/config.py
import copy
import yaml
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .models import PortfolioPosition, UserProfile, YieldOpportunity

DEFAULTS: Dict[str, Any] = {
    'system': {
        'environment': 'mainnet',
        'dry_run': True,
        'log_level': 'INFO',
    },
    'decision': {
        'min_apy_gain_pct': 2.0,
        'min_rebalance_usd': 100.0,
        'max_bridge_fee_pct': 1.0,
    },
    'routing': {
        'api_url': 'https://li.quest/v1',
        'integrator': 'yieldrelay',
        'api_key': None,
        'order': 'RECOMMENDED',
        'allowed_bridges': ['stargate', 'across', 'hop', 'cbridge', 'connext'],
        'default_slippage': 0.005,
        'request_timeout_seconds': 30,
        'quote_limit': 3,
    },
    'monitor': {
        'poll_interval_seconds': 5,
        'max_wait_seconds': 300,
    },
    'chains': {},
    'wallet': {
        'private_key_env': 'EVM_PRIVATE_KEY',
    },
    'audit': {
        'log_file': 'logs/transfers.csv',
    },
    'inputs': {
        'snapshot': 'snapshot.yaml',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = "config.yaml", overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Reads the YAML config and lays it over DEFAULTS.
    A missing section falls back to its defaults; unknown keys are kept as-is.
    """
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    config = _merge(DEFAULTS, raw)
    if overrides:
        config = _merge(config, overrides)
    return config


def load_snapshot(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def parse_snapshot(raw: Dict[str, Any]) -> Tuple[str, UserProfile, List[PortfolioPosition], List[YieldOpportunity]]:
    """
    Turns a snapshot document into workflow inputs:
    `user.address`, `user.records` (profile text records), `positions`, `opportunities`.
    """
    user = raw.get('user') or {}
    address = user.get('address')
    if not address:
        raise ConfigurationError("snapshot is missing user.address")

    profile = UserProfile.from_records(user.get('records') or {})
    positions = [
        PortfolioPosition(chain=int(p['chain']), protocol=p['protocol'],
                          amount_usd=float(p['amount_usd']), apy=float(p['apy']))
        for p in raw.get('positions') or []
    ]
    opportunities = [
        YieldOpportunity(protocol=o['protocol'], chain=int(o['chain']), apy=float(o['apy']),
                         tvl=float(o.get('tvl', 0)), risk_score=int(o['risk_score']),
                         pool_address=o.get('pool_address'))
        for o in raw.get('opportunities') or []
    ]
    return address, profile, positions, opportunities
