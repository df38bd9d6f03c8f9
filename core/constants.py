"""
Shared constants for MailPosture: resolver defaults, RFC limits, probe addresses.
Use these instead of hardcoding servers, limits or selector lists across modules.
"""
# DNS: fixed upstream resolvers (Google + Cloudflare)
DEFAULT_NAMESERVERS = ("8.8.8.8", "1.1.1.1")
DNS_TIMEOUT = 5.0
DNS_LIFETIME = 10.0

# SPF (RFC 7208)
SPF_PREFIX = "v=spf1"
SPF_MAX_LOOKUPS = 10
SPF_LOOKUP_WARN = 8
SPF_LOOKUP_NOTICE = 5
SPF_MAX_RECORD_LENGTH = 255
SPF_LOOKUP_TYPES = ("include", "a", "mx", "exists")
SPF_QUALIFIERS = "+-~?"

# Test senders used to probe SPF evaluation (public resolvers + a Google mail range)
SPF_TEST_IPS = (
    "8.8.8.8",
    "1.1.1.1",
    "208.67.222.222",
    "64.233.160.1",
)

# DKIM (RFC 6376)
DEFAULT_DKIM_SELECTOR = "default"
COMMON_SELECTORS = ("default", "google", "mail", "dkim", "selector1", "selector2")
DKIM_STRONG_KEY_CHARS = 300
DKIM_WEAK_KEY_CHARS = 200

# DMARC (RFC 7489)
DMARC_PREFIX = "v=dmarc1"
# Weakest to strongest
DMARC_POLICIES = ("none", "quarantine", "reject")

# MX
MX_HIGH_PRIORITY = 50
MX_PROVIDERS = {
    "google.com": ("google.com", "gmail.com"),
    "microsoft.com": ("outlook.com", "hotmail.com", "live.com"),
    "cloudflare.com": ("cloudflare",),
    "protonmail.com": ("protonmail",),
    "zoho.com": ("zoho",),
}

# Score scales
SPF_OUT_OF = 5
DKIM_OUT_OF = 5
DMARC_OUT_OF = 5
MX_OUT_OF = 3
OVERALL_OUT_OF = 10

# Rate limiter (requests per window per caller address)
RATE_LIMIT_REQUESTS = 10
RATE_LIMIT_WINDOW_SECONDS = 60.0
RATE_LIMIT_SWEEP_SECONDS = 300.0
