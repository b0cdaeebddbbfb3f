from web3 import Web3
from eth_account import Account
from eth_utils import to_wei

from .models import DepositRecord

DEPOSIT_AMOUNT_ETHER = 32

DEPOSIT_CONTRACT_ABI = [
    {
        "name": "deposit",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "pubkey", "type": "bytes"},
            {"name": "withdrawal_credentials", "type": "bytes"},
            {"name": "signature", "type": "bytes"},
            {"name": "deposit_data_root", "type": "bytes32"},
        ],
        "outputs": [],
    }
]


class DepositWallet:
    """Signs and sends deposit contract calls from a single funded account."""

    def __init__(self, rpc_url, private_key, chain_id, timeout=10):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.chain_id = chain_id
        self.web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def block_number(self) -> int:
        return self.web3.eth.block_number

    def balance_wei(self) -> int:
        return self.web3.eth.get_balance(self.address)

    def send_deposit(self, deposit: DepositRecord, contract_address: str,
                     amount_ether: int = DEPOSIT_AMOUNT_ETHER) -> str:
        """Broadcast ``deposit(...)`` and return the transaction hash.

        Returns once the node accepts the raw transaction; no receipt is awaited.
        """
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=DEPOSIT_CONTRACT_ABI,
        )
        call = contract.functions.deposit(
            deposit.as_bytes("pubkey"),
            deposit.as_bytes("withdrawal_credentials"),
            deposit.as_bytes("signature"),
            deposit.as_bytes("deposit_data_root"),
        )
        transaction = call.build_transaction({
            "from": self.address,
            "value": to_wei(amount_ether, "ether"),
            "chainId": self.chain_id,
            # pending, so a previous deposit still in the mempool is counted
            "nonce": self.web3.eth.get_transaction_count(self.address, "pending"),
        })

        signed_transaction = self.account.sign_transaction(transaction)
        tx_hash = self.web3.eth.send_raw_transaction(signed_transaction.raw_transaction)
        return Web3.to_hex(tx_hash)
