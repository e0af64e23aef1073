"""
Deterministic BANT Normalization

Turns the free-form phrases users type ("₱25,000,000.00", "20M to 25M",
"me and my wife decide", "within 2 months", "Samuel Jackson, 098124814122")
into canonical field values. Every parser returns None when it cannot be
confident; the extractor then falls back to a normalization model call.
"""
import datetime as dt
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
from leadify.models.bant import AuthorityLevel, Duration, DurationUnit, Money
from leadify.utils.phone_normalizer import PhoneNormalizationError, PhoneNormalizer

CENTS = Decimal("0.01")

# ============================================
# MONEY
# ============================================

_CURRENCY_PATTERNS = [
    ("PHP", re.compile(r"₱|\bphp\b|\bpesos?\b|\bphp(?=\d)")),
    ("USD", re.compile(r"\$|\busd\b|\bdollars?\b")),
    ("EUR", re.compile(r"€|\beur\b|\beuros?\b")),
]

_MULTIPLIERS = {
    "k": Decimal(1_000),
    "thousand": Decimal(1_000),
    "m": Decimal(1_000_000),
    "mil": Decimal(1_000_000),
    "mio": Decimal(1_000_000),
    "million": Decimal(1_000_000),
    "millions": Decimal(1_000_000),
    "b": Decimal(1_000_000_000),
    "bn": Decimal(1_000_000_000),
    "billion": Decimal(1_000_000_000),
}

_AMOUNT = re.compile(
    r"(\d[\d,]*(?:\.\d+)?)\s*(billion|bn|b|millions|million|mil|mio|m|thousand|k)?(?![a-z])"
)
_RANGE_JOINER = re.compile(r"^\s*(?:-|–|to|and)\s*[₱$€]?\s*$")

# Bare numbers below this are too ambiguous to take literally ("around 15")
MIN_LITERAL_AMOUNT = Decimal(1_000)


def detect_currency(text: str) -> Optional[str]:
    lowered = text.lower()
    for code, pattern in _CURRENCY_PATTERNS:
        if pattern.search(lowered):
            return code
    return None


def _to_decimal(number: str) -> Optional[Decimal]:
    try:
        return Decimal(number.replace(",", ""))
    except InvalidOperation:
        return None


def parse_money(text: str, default_currency: str = "PHP") -> Optional[Money]:
    """
    Parse a budget phrase. Ranges resolve to their lower bound.

    >>> parse_money("₱25,000,000.00").amount
    Decimal('25000000.00')
    >>> parse_money("10-12M budget").amount
    Decimal('10000000.00')
    """
    if not text:
        return None
    lowered = text.lower()
    matches = list(_AMOUNT.finditer(lowered))
    if not matches:
        return None

    first = matches[0]
    value = _to_decimal(first.group(1))
    if value is None:
        return None
    suffix = first.group(2)

    # "10-12M" / "20 to 25 million": the trailing multiplier covers both ends
    if suffix is None and len(matches) > 1:
        second = matches[1]
        between = lowered[first.end():second.start()]
        if _RANGE_JOINER.match(between) and second.group(2):
            suffix = second.group(2)

    if suffix:
        value = value * _MULTIPLIERS[suffix]
    elif value < MIN_LITERAL_AMOUNT:
        return None

    currency = detect_currency(text) or default_currency
    return Money(amount=value.quantize(CENTS), currency=currency, raw=text.strip())


# ============================================
# TIMELINE
# ============================================

_UNIT_ALIASES = {
    "day": DurationUnit.DAYS, "days": DurationUnit.DAYS,
    "week": DurationUnit.WEEKS, "weeks": DurationUnit.WEEKS, "wk": DurationUnit.WEEKS, "wks": DurationUnit.WEEKS,
    "month": DurationUnit.MONTHS, "months": DurationUnit.MONTHS, "mo": DurationUnit.MONTHS, "mos": DurationUnit.MONTHS,
    "year": DurationUnit.YEARS, "years": DurationUnit.YEARS, "yr": DurationUnit.YEARS, "yrs": DurationUnit.YEARS,
}

_WORD_NUMBERS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "couple": 2, "couple of": 2, "few": 3, "a few": 3, "several": 4,
}

_NUMERIC_DURATION = re.compile(
    r"(\d+(?:\.\d+)?)(?:\s*(?:-|–|to)\s*(\d+(?:\.\d+)?))?\s*"
    r"(days?|weeks?|wks?|months?|mos?|years?|yrs?)\b"
)
_WORD_DURATION = re.compile(
    r"\b(a few|couple of|couple|few|several|an?|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)\s+"
    r"(days?|weeks?|months?|years?)\b"
)
_QUARTER = re.compile(r"\bq([1-4])(?:\s*(\d{4}))?\b")

_IMMEDIATE = re.compile(r"\b(asap|immediately|right away|right now|urgent(?:ly)?|as soon as possible)\b")


def _months_until(target: dt.date, today: dt.date) -> Optional[int]:
    months = (target.year - today.year) * 12 + (target.month - today.month)
    if months < 0:
        return None
    return max(months, 1)


def parse_duration(text: str, today: dt.date | None = None) -> Optional[Duration]:
    """
    Parse a time-to-purchase phrase. Ranges resolve to their upper bound.

    >>> str(parse_duration("3-6 months"))
    '6 months'
    """
    if not text:
        return None
    lowered = text.lower().strip()
    today = today or dt.date.today()

    match = _NUMERIC_DURATION.search(lowered)
    if match:
        amount = float(match.group(2) or match.group(1))
        return Duration(amount=amount, unit=_UNIT_ALIASES[match.group(3)], raw=text.strip())

    match = _WORD_DURATION.search(lowered)
    if match:
        return Duration(amount=_WORD_NUMBERS[match.group(1)], unit=_UNIT_ALIASES[match.group(2)], raw=text.strip())

    if re.search(r"\bnext week\b", lowered):
        return Duration(amount=1, unit=DurationUnit.WEEKS, raw=text.strip())
    if re.search(r"\bnext month\b", lowered):
        return Duration(amount=1, unit=DurationUnit.MONTHS, raw=text.strip())
    if re.search(r"\bnext year\b", lowered):
        return Duration(amount=1, unit=DurationUnit.YEARS, raw=text.strip())
    if _IMMEDIATE.search(lowered):
        return Duration(amount=1, unit=DurationUnit.WEEKS, raw=text.strip())
    if re.search(r"\b(end of (the )?year|this year|year[- ]end)\b", lowered):
        months = _months_until(dt.date(today.year, 12, 1), today)
        return Duration(amount=months or 1, unit=DurationUnit.MONTHS, raw=text.strip())

    match = _QUARTER.search(lowered)
    if match:
        quarter = int(match.group(1))
        year = int(match.group(2)) if match.group(2) else today.year
        months = _months_until(dt.date(year, quarter * 3, 1), today)
        if months is not None:
            return Duration(amount=months, unit=DurationUnit.MONTHS, raw=text.strip())

    return None


# ============================================
# AUTHORITY
# ============================================

_GROUP_AUTHORITY = re.compile(
    r"\b(board|company|corporation|corporate|committee|management|partners|shareholders|"
    r"our team|the family|family decides|investors)\b"
)
_JOINT_AUTHORITY = re.compile(
    r"\b(wife|husband|spouse|partner|fianc[eé]e?|together|both of us|jointly|co-?owner|"
    r"me and my|my \w+ and i|we decide|we both|parents|mother|father|mom|dad)\b"
)
_SOLE_AUTHORITY = re.compile(
    r"\b(sole|solely|only me|just me|myself|i decide|i can decide|i'?m the one|i am the one|"
    r"i make the (final )?decisions?|i will decide|my decision|my call|decision maker|i'?m deciding|up to me)\b"
)


def parse_authority(text: str) -> Optional[AuthorityLevel]:
    """Group beats joint beats sole: 'I need board approval' is a group decision."""
    if not text:
        return None
    lowered = text.lower()
    if _GROUP_AUTHORITY.search(lowered):
        return AuthorityLevel.GROUP
    if _JOINT_AUTHORITY.search(lowered):
        return AuthorityLevel.JOINT
    if _SOLE_AUTHORITY.search(lowered):
        return AuthorityLevel.SOLE
    return None


# ============================================
# NEED
# ============================================

_NEED_CATEGORIES = [
    ("vacation", re.compile(r"\b(vacation|holiday|weekend|beach|getaway|second home)\b")),
    ("rental", re.compile(r"\b(rent(al)?|renting|lease|leasing|airbnb|tenants?)\b")),
    ("resale", re.compile(r"\b(resale|resell|re-sell|flip|flipping|sell it later)\b")),
    ("investment", re.compile(r"\b(invest(ment|ing)?|roi|capital appreciation|portfolio|passive income)\b")),
    ("commercial", re.compile(r"\b(office|business|commercial|shop|store)\b")),
    ("residence", re.compile(
        r"\b(residen(ce|cy|tial)|live in|living|personal use|own use|for my family|family home|"
        r"home|house for us|move in|primary)\b"
    )),
]


def categorize_need(text: str) -> Optional[str]:
    """Map a purpose phrase to a category tag; anything unrecognized is 'other'."""
    if not text or not text.strip():
        return None
    lowered = text.lower()
    for category, pattern in _NEED_CATEGORIES:
        if pattern.search(lowered):
            return category
    return "other"


# ============================================
# CONTACT
# ============================================

_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE = re.compile(r"\+?\d[\d\s\-().]{5,}\d")
_NAME_FILLERS = re.compile(
    r"\b(my name is|my name's|name is|name:|i'?m|i am|this is|it'?s|call me|you can reach me at|"
    r"reach me at|here'?s my|here is my|my number is|my phone is|my email is|number|phone|mobile|"
    r"email|e-mail|contact|details|and|at|is|my)\b",
    re.IGNORECASE,
)
_NAME_STOPWORDS = {
    "sure", "ok", "okay", "yes", "yeah", "no", "thanks", "thank", "you", "please", "hi", "hello",
    "here", "it", "the", "a", "an", "of", "for", "me", "hey", "fine", "not", "rather", "share",
    "i", "i'd", "i'll", "we", "now", "later", "maybe", "go", "ahead", "below", "above",
}
_NAME_TOKEN = re.compile(r"^[A-Za-zÀ-ÖØ-öø-ÿÑñ][A-Za-zÀ-ÖØ-öø-ÿÑñ'.-]*$")
MAX_NAME_WORDS = 4


@dataclass
class ContactMatch:
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    phone_e164: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.phone or self.email)


def clean_phone(raw: str) -> Optional[str]:
    """Strip formatting, keep a leading '+'. Requires 7-15 digits."""
    digits = re.sub(r"\D", "", raw)
    if not 7 <= len(digits) <= 15:
        return None
    return ("+" if raw.strip().startswith("+") else "") + digits


def to_e164(phone: str, region: str) -> Optional[str]:
    try:
        return PhoneNormalizer().normalize(phone, default_region=region).e164
    except PhoneNormalizationError:
        return None


def _extract_name(remainder: str, found_reachable: bool) -> Optional[str]:
    text = _NAME_FILLERS.sub(" ", remainder)
    tokens = [t.strip(" ,;:!?.()[]\"") for t in re.split(r"[\s,;/]+", text)]
    tokens = [t for t in tokens if len(t) > 1 and t.lower() not in _NAME_STOPWORDS]
    if not tokens or len(tokens) > MAX_NAME_WORDS:
        return None
    if not all(_NAME_TOKEN.match(t) for t in tokens):
        return None
    # Without a phone or email next to it, only trust a capitalized full name
    if not found_reachable and (len(tokens) < 2 or not all(t[0].isupper() for t in tokens)):
        return None
    return " ".join(tokens)


def scan_contact(text: str, region: str = "PH") -> ContactMatch:
    """
    Pull name/phone/email out of a free-form message.

    >>> m = scan_contact("Samuel Jackson, 098124814122")
    >>> (m.name, m.phone)
    ('Samuel Jackson', '098124814122')
    """
    match = ContactMatch()
    if not text or not text.strip():
        return match

    remainder = text
    email = _EMAIL.search(remainder)
    if email:
        match.email = email.group(0).lower()
        remainder = remainder.replace(email.group(0), " ")

    for candidate in _PHONE.finditer(remainder):
        phone = clean_phone(candidate.group(0))
        if phone:
            match.phone = phone
            match.phone_e164 = to_e164(phone, region)
            remainder = remainder.replace(candidate.group(0), " ")
            break

    match.name = _extract_name(remainder, found_reachable=bool(match.phone or match.email))
    return match


# ============================================
# MESSAGE-LEVEL SIGNALS
# ============================================

_OPT_OUT = re.compile(
    r"\b(not interested|no thanks|no thank you|unsubscribe|leave me alone|"
    r"stop (messaging|texting|contacting|calling|writing to) me|"
    r"do not contact|don'?t contact|i'?d rather not (share|say|give|tell)|"
    r"not comfortable sharing|won'?t share)\b"
)


def is_noise(text: str) -> bool:
    """True for empty, emoji-only or punctuation-only messages."""
    return not any(ch.isalnum() for ch in text or "")


def detect_opt_out(text: str) -> bool:
    return bool(text) and bool(_OPT_OUT.search(text.lower()))


def word_count(text: str) -> int:
    return len([w for w in re.split(r"\s+", text.strip()) if w])

