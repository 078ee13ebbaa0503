"""
EIP-7702 delegated set-code transactions and EIP-3009 one-time token
authorizations.

Subpackages:
    - adapters.evm: encoding, signing, verification and the network adapter
    - ledger: in-process chain host with the token and batch delegate contracts
    - engine: exceptions and contract events
    - schemas: shared pydantic base models
"""
