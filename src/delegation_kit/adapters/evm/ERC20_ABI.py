"""
ERC20 + EIP-3009 + Batch Delegate ABI Module

Simplified ABI definitions for the token and delegate contracts the network
adapter talks to through ``web3``.

Usage:
    from .ERC20_ABI import get_token_abi, get_erc3009_abi

    contract = web3.eth.contract(address=token_address, abi=get_token_abi())
    balance = await contract.functions.balanceOf(address).call()
"""

from typing import Dict, Any, List


def _view(name: str, inputs: List[Dict[str, str]], output_type: str) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": inputs,
        "outputs": [{"name": "", "type": output_type}],
    }


def get_token_metadata_abi() -> List[Dict[str, Any]]:
    """
    ABI for ``name()``, ``symbol()``, ``decimals()`` and ``balanceOf(address)``.

    ``name()`` doubles as the EIP-712 domain name of EIP-3009 tokens.
    """
    return [
        _view("name", [], "string"),
        _view("symbol", [], "string"),
        _view("decimals", [], "uint8"),
        _view("balanceOf", [{"name": "account", "type": "address"}], "uint256"),
    ]


def get_erc3009_abi() -> List[Dict[str, Any]]:
    """
    ABI for EIP-3009 ``transferWithAuthorization``, ``receiveWithAuthorization``,
    ``cancelAuthorization`` and ``authorizationState``.

    Example:
        contract = web3.eth.contract(address=token_address, abi=get_erc3009_abi())
        state = await contract.functions.authorizationState(authorizer, nonce).call()
    """
    authorization_inputs = [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
        {"name": "v", "type": "uint8"},
        {"name": "r", "type": "bytes32"},
        {"name": "s", "type": "bytes32"},
    ]
    return [
        {
            "name": "transferWithAuthorization",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": authorization_inputs,
            "outputs": [],
        },
        {
            "name": "receiveWithAuthorization",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": authorization_inputs,
            "outputs": [],
        },
        {
            "name": "cancelAuthorization",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "authorizer", "type": "address"},
                {"name": "nonce", "type": "bytes32"},
                {"name": "v", "type": "uint8"},
                {"name": "r", "type": "bytes32"},
                {"name": "s", "type": "bytes32"},
            ],
            "outputs": [],
        },
        _view(
            "authorizationState",
            [{"name": "authorizer", "type": "address"}, {"name": "nonce", "type": "bytes32"}],
            "uint8",
        ),
    ]


def get_token_abi() -> List[Dict[str, Any]]:
    """Metadata, balance and EIP-3009 functions together."""
    return get_token_metadata_abi() + get_erc3009_abi()
