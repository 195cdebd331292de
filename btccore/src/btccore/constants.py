"""
Protocol constants shared by the wallet engine.
"""

from __future__ import annotations

SATS_PER_BTC = 100_000_000

# Outputs below this value are uneconomical to spend
DUST_THRESHOLD = 546

DEFAULT_TX_VERSION = 2

# Sequence numbers
SEQUENCE_FINAL = 0xFFFFFFFF
SEQUENCE_LOCKTIME_ONLY = 0xFFFFFFFE
SEQUENCE_RBF = 0xFFFFFFFD
# Inputs with a sequence below this value opt in to replacement (BIP125)
RBF_SEQUENCE_THRESHOLD = 0xFFFFFFFE

DEFAULT_SEQUENCE = SEQUENCE_LOCKTIME_ONLY
CPFP_CHILD_SEQUENCE = SEQUENCE_RBF

# Sighash types
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

HARDENED_OFFSET = 0x80000000

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Approximate vbytes per input, keyed by the type of the spent output
INPUT_VSIZE_P2PKH = 148
INPUT_VSIZE_P2WPKH = 68
INPUT_VSIZE_P2SH_P2WPKH = 91
INPUT_VSIZE_DEFAULT = 148
OUTPUT_VSIZE = 34
TX_OVERHEAD_VSIZE = 10  # version + locktime + input/output counts

# Fallback fee rates (sat/vB) when no fee source is available
DEFAULT_FEE_RATE = 20
FALLBACK_FEE_RATE_SLOW = 5
FALLBACK_FEE_RATE_NORMAL = 20
FALLBACK_FEE_RATE_FAST = 50
FALLBACK_FEE_RATE_FASTEST = 50

BIP39_VALID_WORD_COUNTS = (12, 15, 18, 21, 24)
BIP39_VALID_STRENGTHS = (128, 160, 192, 224, 256)
BIP39_PBKDF2_ROUNDS = 2048
