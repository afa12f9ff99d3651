"""Typed JSON-RPC client for Bitcoin Core nodes.

The client is a thin transport: each helper maps directly to an RPC method
and returns the parsed JSON result. Structured node errors surface as
:class:`RPCError`, connectivity and HTTP problems as
:class:`RPCTransportError`. Higher-level node behavior (block annotation,
UTXO parsing, fee selection) lives in :mod:`bitcoin_da.node`.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig

logger = logging.getLogger(__name__)

RPC_INVALID_PARAMETER = -8


class RPCError(RuntimeError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class NodeNotFoundError(RPCError):
    """Raised when a requested block height has not been produced yet."""


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common Bitcoin Core JSON-RPC errors."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))

    if code == -26 and "min relay fee not met" in message:
        return (
            "The node rejected the transaction because the fee is below its minrelaytxfee policy. "
            "Raise the fee rate or lower minrelaytxfee in bitcoin.conf for a local test node."
        )
    if code in {-4, -6} or "insufficient funds" in message.lower():
        return (
            "The wallet could not fund the inscription. Fund or unlock the wallet; unconfirmed "
            "outputs are included when listing UTXOs."
        )
    if code == -13 or "wallet passphrase" in message.lower() or "wallet locked" in message.lower():
        return "The wallet is locked. Unlock it with walletpassphrase, then retry."
    if code == -18 or "wallet not found" in message.lower():
        return "No wallet is loaded. Set rpc.wallet (or BITCOIN_DA_RPC_WALLET) or load one with loadwallet."
    if code == RPC_INVALID_PARAMETER and "out of range" in message.lower():
        return "The requested block height is above the node's current tip."
    return None


class BitcoinRPCClient:
    """Typed JSON-RPC client for Bitcoin Core compatible nodes.

    Connection defaults come from :func:`bitcoin_da.config.load_rpc_config`,
    which reads ``BITCOIN_DA_RPC_*`` environment variables and the ``rpc``
    section of ``~/.bitcoin-da.yaml``. The client keeps no state besides its
    HTTP session, so sharing it across threads is up to ``requests``.
    """

    def __init__(self, config: RPCConfig, timeout: float = 30) -> None:
        self.config = config
        self.timeout = timeout
        self._session = requests.Session()
        self._base_url = config.base_url
        self._wallet = config.wallet

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure your Bitcoin node is reachable, authentication is valid, "
                "and BITCOIN_DA_RPC_* variables (or ~/.bitcoin-da.yaml) point to the right host and port."
            ) from exc

        result = self._decode_response(response)
        if result.get("error"):
            error = result["error"]
            if not isinstance(error, dict):
                raise RPCError(-1, str(error))
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        return result.get("result")

    def _decode_response(self, response: Response) -> Dict[str, Any]:
        # Bitcoin Core reports RPC failures with HTTP 500 and a JSON error
        # body; those must reach the caller as RPCError, not transport errors.
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            return body

        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", body if body is not None else response.text)
            if response.status_code == 401:
                raise RPCTransportError(
                    "Unauthorized (401). Ensure BITCOIN_DA_RPC_USER/BITCOIN_DA_RPC_PASSWORD (or your .bitcoin-da.yaml) contain valid credentials.",
                    status_code=response.status_code,
                )
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the URL, wallet path, authentication, and BITCOIN_DA_RPC_* settings.",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            logger.debug("RPC JSON parse error: %s", response.text)
            raise RPCTransportError("RPC server returned malformed JSON")
        return body

    @property
    def _url(self) -> str:
        if self._wallet:
            return f"{self._base_url}/wallet/{self._wallet}"
        return self._base_url

    # Convenience wrappers -------------------------------------------------

    def getblockcount(self) -> int:
        return int(self.call("getblockcount"))

    def getblockhash(self, height: int) -> str:
        return self.call("getblockhash", [height])

    def getblock(self, block_hash: str, verbosity: int = 1) -> Any:
        return self.call("getblock", [block_hash, verbosity])

    def listunspent(
        self,
        minconf: int = 1,
        maxconf: int = 9999999,
        addresses: Optional[list[str]] = None,
    ) -> list[Dict[str, Any]]:
        params: list[Any] = [minconf, maxconf]
        if addresses is not None:
            params.append(addresses)
        return self.call("listunspent", params)

    def getrawchangeaddress(self, address_type: str | None = None) -> str:
        params: list[Any] = [address_type] if address_type is not None else []
        return self.call("getrawchangeaddress", params)

    def getnetworkinfo(self) -> Dict[str, Any]:
        return self.call("getnetworkinfo")

    def getmempoolinfo(self) -> Dict[str, Any]:
        return self.call("getmempoolinfo")

    def estimatesmartfee(
        self, conf_target: int, estimate_mode: str | None = None
    ) -> Dict[str, Any]:
        params: list[Any] = [conf_target]
        if estimate_mode is not None:
            params.append(estimate_mode)
        return self.call("estimatesmartfee", params)

    def signrawtransactionwithwallet(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("signrawtransactionwithwallet", [raw_tx])

    def sendrawtransaction(self, raw_tx: str) -> str:
        return self.call("sendrawtransaction", [raw_tx])
