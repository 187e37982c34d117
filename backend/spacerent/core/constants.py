"""
Centralized constants for the space engine (Encapsulate What Changes).

Change job IDs, layout, or defaults here instead of scattering literals across
services, scheduler and routes. Economics (rent, grace hours) come from config.
"""

# Scheduler job IDs (must match ids used by RentScheduler.add_job)
RENT_CHECK_JOB_ID = "rent_check"

# Rent is always paid for one day at a time
RENT_PERIOD_DAYS = 1

# Reserved spaces get a due date this far out when repaired at startup (pre-paid)
RESERVED_RENT_YEARS = 100

# renewal attempts when another payment lands between read and conditional write
RENT_EXTEND_MAX_ATTEMPTS = 3

# Reserved rental spaces: owner comes from the database only (scripts/set_reserved_owner.py)
RESERVED_SPACE_IDS = ("space3", "space8")

# Fixed layout. Rows are created from this table on startup and never deleted.
SPACE_POSITIONS: dict[str, dict] = {
    "space1": {"x": -75, "z": -70, "row": "north"},
    "space2": {"x": -50, "z": -73, "row": "north"},
    "space3": {"x": -25, "z": -70, "row": "north"},
    "space4": {"x": 25, "z": -70, "row": "north"},
    "space5": {"x": 50, "z": -73, "row": "north"},
    "space6": {"x": 75, "z": -70, "row": "north"},
    "space7": {"x": -70, "z": -20, "row": "south"},
    "space8": {"x": -40, "z": -23, "row": "south"},
    "space9": {"x": 40, "z": -23, "row": "south"},
    "space10": {"x": 70, "z": -20, "row": "south"},
}

# Space flavor by renter's character type
DEFAULT_SPACE_TYPE = "igloo"
CHARACTER_TO_SPACE_TYPE = {
    "penguin": "igloo",
    "marcus": "igloo",
    "whiteWhale": "igloo",
    "blackWhale": "igloo",
    "silverWhale": "igloo",
    "goldWhale": "igloo",
    "dog": "doghouse",
    "frog": "pond",
}
DEFAULT_CHARACTER_TYPE = "penguin"

# Access types
ACCESS_PRIVATE = "private"
ACCESS_PUBLIC = "public"
ACCESS_TOKEN = "token"
ACCESS_FEE = "fee"
ACCESS_BOTH = "both"
ACCESS_TYPES = (ACCESS_PRIVATE, ACCESS_PUBLIC, ACCESS_TOKEN, ACCESS_FEE, ACCESS_BOTH)
TOKEN_GATED_ACCESS = (ACCESS_TOKEN, ACCESS_BOTH)
FEE_GATED_ACCESS = (ACCESS_FEE, ACCESS_BOTH)

# Rent status
RENT_CURRENT = "current"
RENT_GRACE_PERIOD = "grace_period"

# Receipt kinds (payment_receipts.kind)
RECEIPT_RENT = "rent"
RECEIPT_RENEWAL = "renewal"
RECEIPT_ENTRY_FEE = "entry_fee"

# Audit tag for entry fee transfers
ENTRY_FEE_TRANSACTION_TYPE = "space_entry_fee"

DEFAULT_TOKEN_SYMBOL = "TOKEN"

DEFAULT_TOKEN_GATE = {
    "enabled": False,
    "tokenAddress": None,
    "tokenSymbol": None,
    "minimumBalance": 1,
}

DEFAULT_ENTRY_FEE = {
    "enabled": False,
    "amount": 0,
    "tokenAddress": None,
    "tokenSymbol": None,
}

DEFAULT_BANNER = {
    "title": None,
    "ticker": None,
    "shill": None,
    "styleIndex": 0,
    "useCustomColors": False,
    "customGradient": ["#845EF7", "#BE4BDB", "#F06595"],
    "textColor": "#FFFFFF",
    "accentColor": "#00FFFF",
    "font": "Inter, system-ui, sans-serif",
    "textAlign": "center",
}

# Rate limiter buckets
RATE_BUCKET_ENTRY_CHECK = "entry_check"

# Guests visiting without a wallet are counted under this prefix + connection id
GUEST_WALLET_PREFIX = "guest_"
