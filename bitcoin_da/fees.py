"""Fee-rate selection for inscription transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Tuple

from .rpc_client import RPCError

logger = logging.getLogger(__name__)

DEFAULT_CONF_TARGET = 1
DEFAULT_FALLBACK_FEE_RATE_SATVB = 1.0


def btc_per_kvb_to_sat_vb(rate: float | int) -> float:
    """Convert a BTC/kvB fee rate to sat/vB."""

    return float(rate) * 1e8 / 1000


@dataclass
class FeeSelectionResult:
    """Container for fee-rate decisions."""

    fee_rate_sat_vb: float
    source: str
    floors_applied: list[Tuple[str, float]] = field(default_factory=list)


def _extract_estimate_rate(estimate_resp: Dict[str, Any]) -> float | None:
    rate_val = estimate_resp.get("feerate")
    if rate_val is None:
        errors = estimate_resp.get("errors")
        if errors:
            logger.debug("estimatesmartfee returned no rate: %s", errors)
        return None
    try:
        return btc_per_kvb_to_sat_vb(float(rate_val))
    except (TypeError, ValueError):
        return None


def _policy_floor_from_rpc(rpc_client: Any) -> list[Tuple[str, float]]:
    """Return policy fee floors (sat/vB) reported by the node."""

    floors: list[Tuple[str, float]] = []
    try:
        mempool = rpc_client.getmempoolinfo()
    except RPCError as exc:
        logger.debug("getmempoolinfo unavailable: %s", exc)
        mempool = None
    if isinstance(mempool, dict) and mempool.get("mempoolminfee") is not None:
        try:
            floors.append(("mempoolminfee", btc_per_kvb_to_sat_vb(float(mempool["mempoolminfee"]))))
        except (TypeError, ValueError):
            logger.debug("Unable to parse mempoolminfee: %s", mempool["mempoolminfee"])

    try:
        network_info = rpc_client.getnetworkinfo()
    except RPCError as exc:
        logger.debug("getnetworkinfo unavailable: %s", exc)
        network_info = None
    if isinstance(network_info, dict) and network_info.get("relayfee") is not None:
        try:
            floors.append(("relayfee", btc_per_kvb_to_sat_vb(float(network_info["relayfee"]))))
        except (TypeError, ValueError):
            logger.debug("Unable to parse relayfee: %s", network_info["relayfee"])
    return floors


def select_fee_rate(
    rpc_client: Any,
    *,
    conf_target: int = DEFAULT_CONF_TARGET,
    fallback_fee_rate_satvb: float = DEFAULT_FALLBACK_FEE_RATE_SATVB,
) -> FeeSelectionResult:
    """Ask the node for a fee estimate, never going below its relay policy.

    Regtest and freshly started nodes have no estimate; the fallback rate is
    used then.
    """

    fee_rate: float | None = None
    source = "estimatesmartfee"
    try:
        fee_rate = _extract_estimate_rate(rpc_client.estimatesmartfee(conf_target) or {})
    except RPCError as exc:
        logger.info("estimatesmartfee unavailable: %s", exc)

    if fee_rate is None:
        logger.warning(
            "No fee estimate available; falling back to %.2f sat/vB", fallback_fee_rate_satvb
        )
        fee_rate = float(fallback_fee_rate_satvb)
        source = "fallback"

    floors = _policy_floor_from_rpc(rpc_client)
    floors_applied: list[Tuple[str, float]] = []
    if floors:
        floor_value = max(rate for _, rate in floors)
        if fee_rate < floor_value:
            logger.debug("Applying fee floor %.2f sat/vB over %s", floor_value, fee_rate)
            fee_rate = floor_value
            floors_applied = [(label, rate) for label, rate in floors if rate == floor_value]

    return FeeSelectionResult(fee_rate_sat_vb=fee_rate, source=source, floors_applied=floors_applied)


def format_floors_for_log(floors: Iterable[Tuple[str, float]]) -> str:
    """Format fee floors for user-facing logs."""

    entries = [f"{label}={rate:.2f} sat/vB" for label, rate in floors]
    return ", ".join(entries) if entries else "none"
