"""
System-wide constants for the vault engine.

Centralizes fixed rates, venue limits and endpoint paths.
"""
from decimal import Decimal

# Chain
APTOS_TESTNET_NODE_URL = "https://fullnode.testnet.aptoslabs.com/v1"
APTOS_VIEW_ENDPOINT = "/view"
APTOS_TX_BY_HASH_ENDPOINT = "/transactions/by_hash/{tx_hash}"
DEFAULT_VAULT_MODULE_ADDRESS = "0x98dfcb742ea92c051230fbc1defac9b9c8d298670d544c0e1a23b9620b3a27e2"
DEFAULT_VAULT_MODULE_NAME = "vault_v2"
CHAIN_FIXED_POINT_SCALE = Decimal("100000000")  # 10^8

# Venue
HYPERLIQUID_MAINNET_URL = "https://api.hyperliquid.xyz"
HYPERLIQUID_TESTNET_URL = "https://api.hyperliquid-testnet.xyz"
HYPERLIQUID_INFO_ENDPOINT = "/info"
PERP_SUFFIX = "-PERP"
TIF_IOC = "Ioc"
TIF_ALO = "Alo"

# Vault accounting
SHARES_PER_UNIT = Decimal("100")
MIN_HEDGE_DEPOSIT = Decimal("3.0")
DEFAULT_SHARE_PRICE = Decimal("1.0")
RESET_SHARE_THRESHOLD = Decimal("0.001")
DEFAULT_HEDGE_COIN = "APT"
DEFAULT_REFERENCE_PRICE = Decimal("4.22")

# Order sizing
MIN_ORDER_SIZE = Decimal("0.001")
DEPOSIT_HEDGE_SLIPPAGE = Decimal("1.0015")  # 15 bps
BASE_SLIPPAGE_BPS = 15
SLIPPAGE_STEP_BPS = 10
MAX_DECIMALS_PERP = 6
MAX_DECIMALS_SPOT = 8
DEFAULT_PRICE_INCREMENT = Decimal("0.01")
DEFAULT_SZ_DECIMALS = 4
PRICE_SIGNIFICANT_FIGURES = 5

# Verification / confirmation
RECENT_FILLS_WINDOW_SECONDS = 5 * 60
TX_CONFIRMATION_POLL_SECONDS = 1.0
TX_CONFIRMATION_TIMEOUT_SECONDS = 30.0

# Timeouts and retries
DEFAULT_API_TIMEOUT = 10  # seconds
MAX_RETRY_ATTEMPTS = 3

# Ledger queries
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100
DEFAULT_EVENTS_LIMIT = 50
ACCOUNT_HISTORY_LIMIT = 10
