"""Ledger core for the model marketplace.

Builds and reads the transactions a model-marketplace program records:

- Addresses: deterministic program addresses for model and receipt accounts
- Codec: instruction payloads and model account layout
- Lineage: bounded, cycle-safe walk of a model's parent chain
- Royalty: integer split of a payment across platform, lineage and developer
- Assembly: atomic transactions combining instructions and value transfers
"""

from .errors import (
    AddressDerivationError,
    LedgerRequestError,
    LineageRejectedError,
    MalformedAccountError,
    MarketplaceError,
    ModelNotFoundError,
    ModelResolutionError,
    RoyaltyComputationError,
    SettlementError,
    SubmissionError,
    SubscriptionExistsError,
)
from .address import (
    SYSTEM_PROGRAM_ID,
    Address,
    create_program_address,
    derive_address,
    derive_model_address,
    derive_receipt_address,
    is_on_curve,
)
from .models import (
    AccountMeta,
    AncestorShare,
    AssembledTransaction,
    Instruction,
    LineageTrace,
    LineageViolation,
    ModelRecord,
    RoyaltyDistribution,
    TransferDirective,
)
from .codec import (
    decode_model_account,
    discriminator,
    encode_create_model,
    encode_model_account,
    encode_purchase_subscription,
)
from .message import compile_message, load_keypair, sign_transaction, transaction_id
from .store import LedgerClient, SnapshotLedgerClient, SolanaRPCClient
from .lineage import LineageResolver, trace_lineage
from .royalty import distribute_royalties
from .assembler import SigningMode, TransactionAssembler
from .resolver import ModelIdentifierResolver
from .service import MarketplaceService, PreparedPurchase, Settlement, SubscriptionStatus

__all__ = [
    "SYSTEM_PROGRAM_ID",
    "AccountMeta",
    "Address",
    "AddressDerivationError",
    "AncestorShare",
    "AssembledTransaction",
    "Instruction",
    "LedgerClient",
    "LedgerRequestError",
    "LineageRejectedError",
    "LineageResolver",
    "LineageTrace",
    "LineageViolation",
    "MalformedAccountError",
    "MarketplaceError",
    "MarketplaceService",
    "ModelIdentifierResolver",
    "ModelNotFoundError",
    "ModelRecord",
    "ModelResolutionError",
    "PreparedPurchase",
    "RoyaltyComputationError",
    "RoyaltyDistribution",
    "Settlement",
    "SettlementError",
    "SigningMode",
    "SnapshotLedgerClient",
    "SolanaRPCClient",
    "SubmissionError",
    "SubscriptionExistsError",
    "SubscriptionStatus",
    "TransactionAssembler",
    "TransferDirective",
    "compile_message",
    "create_program_address",
    "decode_model_account",
    "derive_address",
    "derive_model_address",
    "derive_receipt_address",
    "discriminator",
    "distribute_royalties",
    "encode_create_model",
    "encode_model_account",
    "encode_purchase_subscription",
    "is_on_curve",
    "load_keypair",
    "sign_transaction",
    "trace_lineage",
    "transaction_id",
]
