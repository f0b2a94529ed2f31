from enum import Enum


class PaymentMethodType(str, Enum):
    CARD = "card"
    LINK = "link"
    US_BANK_ACCOUNT = "us_bank_account"
    SEPA_DEBIT = "sepa_debit"

class PriceType(str, Enum):
    SINGLE_PAYMENT = "single_payment"
    SUBSCRIPTION = "subscription"
    USAGE = "usage"

class DiscountAmountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"

class DiscountDuration(str, Enum):
    ONCE = "once"
    FOREVER = "forever"
    NUMBER_OF_PAYMENTS = "number_of_payments"

class StripeConnectContractType(str, Enum):
    PLATFORM = "platform"
    MERCHANT_OF_RECORD = "merchant_of_record"

class FeeCalculationType(str, Enum):
    SUBSCRIPTION_PAYMENT = "subscription_payment"
    CHECKOUT_SESSION_PAYMENT = "checkout_session_payment"

class SubscriptionItemType(str, Enum):
    USAGE = "usage"
    STATIC = "static"

class PaymentStatus(str, Enum):
    CANCELED = "canceled"
    FAILED = "failed"
    REFUNDED = "refunded"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"

class TaxReversalMode(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


# Refunded payments stay in here: refunds do not give back processed volume.
RESOLVED_PAYMENT_STATUSES = (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED)

# ISO 3166-1 alpha-2, plus XK (Kosovo)
COUNTRY_CODES = frozenset(
    """
    AD AE AF AG AI AL AM AO AQ AR AS AT AU AW AX AZ BA BB BD BE BF BG BH BI BJ
    BL BM BN BO BQ BR BS BT BV BW BY BZ CA CC CD CF CG CH CI CK CL CM CN CO CR
    CU CV CW CX CY CZ DE DJ DK DM DO DZ EC EE EG EH ER ES ET FI FJ FK FM FO FR
    GA GB GD GE GF GG GH GI GL GM GN GP GQ GR GS GT GU GW GY HK HM HN HR HT HU
    ID IE IL IM IN IO IQ IR IS IT JE JM JO JP KE KG KH KI KM KN KP KR KW KY KZ
    LA LB LC LI LK LR LS LT LU LV LY MA MC MD ME MF MG MH MK ML MM MN MO MP MQ
    MR MS MT MU MV MW MX MY MZ NA NC NE NF NG NI NL NO NP NR NU NZ OM PA PE PF
    PG PH PK PL PM PN PR PS PT PW PY QA RE RO RS RU RW SA SB SC SD SE SG SH SI
    SJ SK SL SM SN SO SR SS ST SV SX SY SZ TC TD TF TG TH TJ TK TL TM TN TO TR
    TT TV TW TZ UA UG UM US UY UZ VA VC VE VG VI VN VU WF WS XK YE YT ZA ZM ZW
    """.split()
)
