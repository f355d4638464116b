import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

CONTRACTS_DIR = Path(__file__).parent.parent / "contracts"


class ContractUtility:
    """
    Utility for ABI loading and signer setup.

    ABIs are shipped with the package under ``contracts/<Name>.json`` in the
    ``{"abi": [...]}`` artifact format.
    """

    def __init__(self, contracts_dir: Path = CONTRACTS_DIR) -> None:
        """
        Initialize the ContractUtility.

        Args:
            contracts_dir: Directory holding the contract artifacts
        """
        self.contracts_dir = contracts_dir

    @staticmethod
    def load_account(secret: str) -> LocalAccount:
        """Build the signing account from a hex private key.

        Raises:
            ValueError: If the key is empty or malformed
        """
        if not secret:
            raise ValueError("Private key is required for signing transactions")
        return Account.from_key(secret)

    def get_contract_abi(self, contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the contracts folder.

        Args:
            contract_name: Name of the contract (without .json extension)

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            json.JSONDecodeError: If the contract file is invalid JSON
        """
        return _load_abi(str((self.contracts_dir / f"{contract_name}.json").resolve()))


@lru_cache(maxsize=None)
def _load_abi(contract_path: str) -> list[dict[str, Any]]:
    with Path(contract_path).open() as file:
        contract_data: dict[str, Any] = json.load(file)

    return contract_data["abi"]
