import re
from dataclasses import dataclass

CONFIDENCE_FLOOR = 0.7


@dataclass(frozen=True)
class FieldHint:
    text: str
    question: str = ""
    option_label: str = ""

    @property
    def normalized(self) -> str:
        return normalize_hint(self.text)


@dataclass(frozen=True)
class FieldMatch:
    field: str
    confidence: float

    @property
    def accepted(self) -> bool:
        return self.confidence >= CONFIDENCE_FLOOR


@dataclass(frozen=True)
class FieldRule:
    field: str
    keywords: tuple[str, ...]
    confidence: float

    def matches(self, text: str) -> bool:
        return any(_keyword_pattern(keyword).search(text) for keyword in self.keywords)


def normalize_hint(value: str) -> str:
    lowered = (value or "").lower().replace("_", " ").replace("-", " ")
    return re.sub(r"\s+", " ", lowered).strip()


_PATTERN_CACHE: dict[str, re.Pattern] = {}


def _keyword_pattern(keyword: str) -> re.Pattern:
    pattern = _PATTERN_CACHE.get(keyword)
    if pattern is None:
        pattern = re.compile(r"(?<![a-z0-9])" + re.escape(normalize_hint(keyword)))
        _PATTERN_CACHE[keyword] = pattern
    return pattern


# First matching rule wins, so order encodes priority.
FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("first_name", ("first name", "given name", "firstname"), 0.9),
    FieldRule("last_name", ("last name", "surname", "family name", "lastname"), 0.9),
    FieldRule("full_name", ("full name", "legal name"), 0.9),
    FieldRule("email", ("email", "e-mail"), 0.9),
    FieldRule("phone", ("phone", "mobile", "telephone"), 0.9),
    FieldRule("location", ("city", "location", "address"), 0.7),
    FieldRule("work_authorization", ("work authorization", "authorized to work", "legally authorized"), 0.7),
    FieldRule("sponsorship", ("require sponsorship", "sponsorship", "visa sponsor"), 0.8),
    FieldRule("prior_employment", ("previously worked", "previously been employed", "worked here before"), 0.8),
    FieldRule("referral_source", ("how did you hear", "hear about this job", "hear about us"), 0.8),
    FieldRule("state", ("which state", "state or province"), 0.8),
    FieldRule("gender", ("gender",), 0.8),
    FieldRule("lgbtq", ("lgbt",), 0.8),
    FieldRule("race_ethnicity", ("race", "ethnicity"), 0.8),
    FieldRule("veteran_status", ("veteran",), 0.8),
    FieldRule("disability_status", ("disability",), 0.8),
    FieldRule("linkedin", ("linkedin",), 0.8),
    FieldRule("website", ("portfolio", "website", "personal site"), 0.8),
    FieldRule("github", ("github",), 0.8),
    FieldRule("current_company", ("company name", "current employer", "current company"), 0.6),
    FieldRule("location", ("country",), 0.5),
    FieldRule("website", ("url", "link"), 0.6),
    FieldRule("full_name", ("name",), 0.7),
)


def classify_hint(text: str, rules: tuple[FieldRule, ...] = FIELD_RULES) -> FieldMatch | None:
    normalized = normalize_hint(text)
    if not normalized:
        return None
    for rule in rules:
        if rule.matches(normalized):
            return FieldMatch(field=rule.field, confidence=rule.confidence)
    return None


LONGFORM_KEYS = ("cover_letter", "why_company", "why_role", "additional_info", "longform_default")
LONGFORM_HINT_MARKERS = ("resume_text", "cover_letter_text", "resume text", "cover letter text")


def classify_longform(hint: str) -> str:
    text = normalize_hint(hint)
    if "cover letter" in text:
        return "cover_letter"
    mentions_role = "role" in text or "position" in text
    if "why" in text and mentions_role:
        return "why_role"
    if "why" in text or "interested" in text or "motivat" in text:
        return "why_company"
    if mentions_role:
        return "why_role"
    if "additional" in text or "anything else" in text:
        return "additional_info"
    return "longform_default"


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def lookup_answer(answers: dict[str, str], key: str) -> str:
    for candidate in (key, _camel(key)):
        value = (answers.get(candidate) or "").strip()
        if value:
            return value
    return ""


DEMOGRAPHIC_FIELDS = ("gender", "lgbtq", "race_ethnicity", "veteran_status", "disability_status")

DECLINE_PHRASES = (
    "prefer not",
    "don't wish to answer",
    "don’t wish to answer",
    "do not wish to answer",
    "decline to",
    "not listed",
    "i don't wish",
)

# (phrases that identify the profile value, phrases an option must contain, phrases that rule an option out)
DemographicSynonym = tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]

DEMOGRAPHIC_SYNONYMS: dict[str, tuple[DemographicSynonym, ...]] = {
    "gender": (
        (("female", "woman"), ("woman", "female"), ()),
        (("male", "man"), ("man", "male"), ()),
        (
            ("non binary", "non-binary", "nonbinary", "non conforming"),
            ("non binary", "non-binary", "nonbinary", "non-conforming"),
            (),
        ),
    ),
    "race_ethnicity": (
        (("asian",), ("asian",), ()),
        (("black", "african"), ("black", "african"), ()),
        (("white", "caucasian"), ("white",), ()),
        (("hispanic", "latinx", "latino", "latina"), ("hispanic", "latinx", "latino"), ()),
        (("native hawaiian", "pacific"), ("pacific",), ()),
        (("indigenous", "native american", "american indian"), ("indigenous", "native", "american indian"), ("hawaiian",)),
        (("two or more",), ("two or more",), ()),
    ),
    "veteran_status": (
        (("not", "no"), ("not a protected veteran", "not a veteran", "i am not"), ()),
        (("yes", "protected", "veteran"), ("protected veteran", "i identify as", "veteran"), ("not",)),
    ),
    "disability_status": (
        (
            ("not", "no", "don't", "do not"),
            ("no, i don't have a disability", "no, i do not have a disability", "no, i don’t have a disability"),
            (),
        ),
        (("yes", "have a disability"), ("yes, i have a disability", "yes, i have"), ("don't", "do not")),
    ),
    "lgbtq": (
        (("yes",), ("yes",), ()),
        (("no",), ("no",), ()),
    ),
}

# Option text alone can reveal the category when the question context is missing.
DEMOGRAPHIC_OPTION_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("gender", ("woman", "man", "non binary", "non-binary", "non-conforming")),
    ("race_ethnicity", ("asian", "black", "white", "hispanic", "latinx", "native hawaiian", "pacific islander", "indigenous")),
    ("veteran_status", ("veteran",)),
    ("disability_status", ("disability",)),
)
DEMOGRAPHIC_QUESTION_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("gender", ("gender",)),
    ("lgbtq", ("lgbt", "community")),
    ("race_ethnicity", ("race", "ethnicity")),
    ("veteran_status", ("veteran",)),
    ("disability_status", ("disability",)),
)


def _has_word(text: str, phrase: str) -> bool:
    return re.search(r"(?<![a-z])" + re.escape(phrase) + r"(?![a-z])", text) is not None


def is_decline_option(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in DECLINE_PHRASES)


def infer_demographic_field(question: str, option_text: str) -> str | None:
    question_text = (question or "").lower()
    for field, markers in DEMOGRAPHIC_QUESTION_MARKERS:
        if any(marker in question_text for marker in markers):
            return field
    candidate = (option_text or "").lower()
    for field, markers in DEMOGRAPHIC_OPTION_MARKERS:
        if any(_has_word(candidate, marker) for marker in markers):
            return field
    return None


def option_matches(field: str, target: str, option_text: str) -> bool:
    """Whether a radio/checkbox/select option expresses the profile value for field."""
    candidate = re.sub(r"\s+", " ", (option_text or "").lower()).strip()
    wanted = re.sub(r"\s+", " ", (target or "").lower()).strip()
    if not candidate or not wanted:
        return False
    if is_decline_option(candidate) or is_decline_option(wanted):
        return is_decline_option(candidate) and is_decline_option(wanted)

    synonyms = DEMOGRAPHIC_SYNONYMS.get(field)
    if synonyms:
        for value_markers, option_phrases, option_excludes in synonyms:
            if any(_has_word(wanted, marker) for marker in value_markers):
                if any(_has_word(candidate, phrase) for phrase in option_excludes):
                    return False
                return any(_has_word(candidate, phrase) for phrase in option_phrases)
        if field != "race_ethnicity":
            return False

    if candidate == wanted or _has_word(candidate, wanted):
        return True
    return candidate in {"yes", "no"} and wanted.startswith(candidate) and _has_word(wanted, candidate)
