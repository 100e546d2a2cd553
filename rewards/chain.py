"""
Polygon gateway: balance reads and outbound transfers from the relayer key.

Transfers from one signer are serialized so nonces are consumed in order; the
next transfer is submitted only after the previous one is mined or failed.
"""
import logging
import threading
from decimal import Decimal, ROUND_DOWN
from typing import Dict

import requests
from eth_account import Account
from flask import current_app
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from rewards.errors import InsufficientLiquidity, TransferFailed, TransferIndeterminate
from rewards.permits import PermitRegistry
from utils import normalize_address


logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

NATIVE_ASSET = "POL"
NATIVE_DECIMALS = 18
NATIVE_TRANSFER_GAS = 21000

_signer_locks: Dict[str, threading.Lock] = {}
_signer_locks_guard = threading.Lock()


def signer_lock(address: str) -> threading.Lock:
    with _signer_locks_guard:
        lock = _signer_locks.get(address)
        if lock is None:
            lock = _signer_locks[address] = threading.Lock()
        return lock


def _rpc_session() -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=None,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class PolygonGateway:
    """Reads reference-asset balances and executes relayer transfers."""

    def __init__(self, rpc_url: str, token_address: str, relayer_key: str = None,
                 token_decimals: int = 6, request_timeout: int = 20, receipt_timeout: int = 120):
        self.w3 = Web3(Web3.HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": request_timeout},
            session=_rpc_session(),
        ))
        self.token_address = normalize_address(token_address)
        self.token = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)
        self.token_decimals = token_decimals
        self.receipt_timeout = receipt_timeout
        self.account = Account.from_key(relayer_key) if relayer_key else None

    @classmethod
    def from_config(cls, config) -> "PolygonGateway":
        return cls(
            rpc_url=config["POLYGON_RPC_URL"],
            token_address=config["USDC_TOKEN_ADDRESS"],
            relayer_key=config.get("RELAYER_PRIVATE_KEY"),
            token_decimals=config.get("USDC_DECIMALS", 6),
            request_timeout=config.get("RPC_TIMEOUT_SECONDS", 20),
            receipt_timeout=config.get("TX_RECEIPT_TIMEOUT_SECONDS", 120),
        )

    @property
    def relayer_address(self):
        return self.account.address if self.account else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _to_units(self, amount: Decimal, decimals: int) -> int:
        return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))

    def _from_units(self, raw: int, decimals: int) -> Decimal:
        return Decimal(raw) / (Decimal(10) ** decimals)

    def read_balance(self, address: str) -> Decimal:
        """Reference asset (USDC) balance of `address`."""
        raw = self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()
        return self._from_units(raw, self.token_decimals)

    def relayer_balance(self, asset: str) -> Decimal:
        if self.account is None:
            return Decimal("0")
        if asset == NATIVE_ASSET:
            return self._from_units(self.w3.eth.get_balance(self.account.address), NATIVE_DECIMALS)
        return self.read_balance(self.account.address)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------
    def _build_transaction(self, destination: str, amount: Decimal, asset: str, nonce: int) -> dict:
        sender = self.account.address
        chain_id = self.w3.eth.chain_id
        if asset == NATIVE_ASSET:
            return {
                "from": sender,
                "to": destination,
                "value": self._to_units(amount, NATIVE_DECIMALS),
                "nonce": nonce,
                "gas": NATIVE_TRANSFER_GAS,
                "gasPrice": self.w3.eth.gas_price,
                "chainId": chain_id,
            }
        units = self._to_units(amount, self.token_decimals)
        return self.token.functions.transfer(destination, units).build_transaction({
            "from": sender,
            "nonce": nonce,
            "chainId": chain_id,
        })

    def transfer_out(self, destination: str, amount: Decimal, asset: str = "USDC") -> str:
        """
        Send `amount` of `asset` to `destination` and wait for the receipt.
        Raises TransferFailed / InsufficientLiquidity when nothing was sent or the
        transaction reverted, TransferIndeterminate when the outcome is unknown.
        """
        if self.account is None:
            raise TransferFailed("Relayer key not configured")

        destination = Web3.to_checksum_address(destination)
        with signer_lock(self.account.address):
            try:
                liquidity = self.relayer_balance(asset)
                if liquidity < amount:
                    raise InsufficientLiquidity(
                        f"Relayer {asset} balance {liquidity} below requested {amount}"
                    )
                nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
                tx = self._build_transaction(destination, amount, asset, nonce)
                signed = self.account.sign_transaction(tx)
            except (requests.RequestException, Web3Exception, ValueError) as e:
                raise TransferFailed(f"Could not prepare transfer: {e}")

            signed_hex = Web3.to_hex(signed.hash)
            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except requests.ConnectTimeout as e:
                raise TransferFailed(f"RPC unreachable: {e}")
            except requests.RequestException as e:
                # the node may have accepted the transaction before the connection dropped
                raise TransferIndeterminate(f"Broadcast of {signed_hex} unconfirmed: {e}", tx_hash=signed_hex)
            except (Web3Exception, ValueError) as e:
                raise TransferFailed(f"Transfer rejected: {e}")

            tx_hex = Web3.to_hex(tx_hash)
            logger.info(f"Transfer broadcast {tx_hex}: {amount} {asset} -> {destination}")

            try:
                receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            except (TimeExhausted, requests.RequestException) as e:
                raise TransferIndeterminate(f"No receipt for {tx_hex}: {e}", tx_hash=tx_hex)

            if receipt["status"] != 1:
                raise TransferFailed(f"Transaction {tx_hex} reverted", tx_hash=tx_hex)

            return tx_hex


def get_chain():
    """The application's gateway; built from config on first use."""
    chain = current_app.extensions.get("reward_chain")
    if chain is None:
        chain = PolygonGateway.from_config(current_app.config)
        current_app.extensions["reward_chain"] = chain
    return chain


def get_permits():
    permits = current_app.extensions.get("reward_permits")
    if permits is None:
        permits = current_app.extensions["reward_permits"] = PermitRegistry()
    return permits
