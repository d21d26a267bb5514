import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

# Gateway fee recorded on every milestone (percent of the base amount)
GATEWAY_FEE_PERCENT = Decimal(os.getenv("GATEWAY_FEE_PERCENT", "2"))

# Default currency for contract terms and campaign budgets
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

# Influencer edit window: "after_confirm" or "before_confirm"
INFLUENCER_EDIT_POLICY = os.getenv("INFLUENCER_EDIT_POLICY", "after_confirm")

# Signature artifact limit
MAX_SIGNATURE_IMAGE_BYTES = int(os.getenv("MAX_SIGNATURE_IMAGE_BYTES", 50 * 1024))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
