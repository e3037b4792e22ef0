"""Heuristic mapping from form labels to profile data, plus control helpers.

Design rules:
  - Label patterns are an ordered table; the first pattern whose extractor
    yields a non-empty value wins.
  - Helpers never raise for a control that does not match; they return
    False / 0 and let the caller decide.
  - Generic canned answers are only offered here. Whether they may be used
    is the caller's decision (opt-in, optional fields only).
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from apply_worker.browser.actions import collapse_whitespace
from apply_worker.core.schemas import Profile, WorkAuthorization

logger = logging.getLogger(__name__)

TAG_NAME_JS = "el => el.tagName.toLowerCase()"

MATCH_CONFIDENCE = 0.9

_SPONSOR_FREE: frozenset[WorkAuthorization] = frozenset({
    WorkAuthorization.US_CITIZEN,
    WorkAuthorization.PERMANENT_RESIDENT,
    WorkAuthorization.GREEN_CARD,
})
_NEEDS_SPONSORSHIP: frozenset[WorkAuthorization] = frozenset({
    WorkAuthorization.H1B,
    WorkAuthorization.OPT,
    WorkAuthorization.VISA_HOLDER,
})


def _sponsorship_value(p: Profile) -> str | None:
    if p.work_authorization in _SPONSOR_FREE:
        return "No"
    if p.work_authorization in _NEEDS_SPONSORSHIP:
        return "Yes"
    return None


def _work_auth_value(p: Profile) -> str | None:
    return p.work_authorization.value if p.work_authorization else None


# (field, pattern, extractor) in priority order
LABEL_PATTERNS: tuple[tuple[str, re.Pattern[str], Callable[[Profile], str | None]], ...] = (
    ("first_name", re.compile(r"first.?name|given.?name"), lambda p: p.first_name),
    ("last_name", re.compile(r"last.?name|surname|family.?name"), lambda p: p.last_name or None),
    ("full_name", re.compile(r"full.?name"), lambda p: p.full_name),
    ("full_name", re.compile(r"^name$"), lambda p: p.full_name),
    ("email", re.compile(r"e-?mail"), lambda p: p.email),
    ("phone", re.compile(r"phone|mobile|telephone"), lambda p: p.phone),
    ("linkedin_url", re.compile(r"linkedin"), lambda p: p.linkedin_url),
    ("github_url", re.compile(r"github"), lambda p: p.github_url),
    ("website_url", re.compile(r"website|portfolio|personal.?site"), lambda p: p.website_url),
    ("location_city", re.compile(r"\bcity\b"), lambda p: p.location_city),
    ("location_state", re.compile(r"\bstate\b|province"), lambda p: p.location_state),
    ("location", re.compile(r"\blocation\b|\baddress\b"), lambda p: p.location or None),
    ("location_country", re.compile(r"\bcountry\b"), lambda p: p.location_country),
    (
        "work_authorization",
        re.compile(r"work.?auth|legally.?authorized|right.?to.?work"),
        _work_auth_value,
    ),
    ("sponsorship", re.compile(r"sponsorship|visa"), _sponsorship_value),
)

_AUTHORIZED_PATTERN = re.compile(
    r"authori[sz]ed to work|legally.?authori[sz]ed|eligible to work|right.?to.?work|work.?auth",
)
_SPONSORSHIP_PATTERN = re.compile(r"sponsor")

WORK_AUTH_SYNONYMS: dict[WorkAuthorization, list[str]] = {
    WorkAuthorization.US_CITIZEN: ["citizen", "us citizen", "united states citizen", "authorized", "yes"],
    WorkAuthorization.PERMANENT_RESIDENT: ["permanent resident", "green card", "authorized", "yes"],
    WorkAuthorization.GREEN_CARD: ["permanent resident", "green card", "authorized", "yes"],
    WorkAuthorization.H1B: ["h1b", "h-1b", "work visa", "visa holder"],
    WorkAuthorization.VISA_HOLDER: ["visa holder", "work visa", "visa"],
    WorkAuthorization.OPT: ["opt", "f-1", "student"],
    WorkAuthorization.EAD: ["ead", "employment authorization"],
    WorkAuthorization.OTHER: ["other", "visa"],
}

# (label fragments, canned answer)
GENERIC_RESPONSES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("how did you hear", "where did you find"), "Online job search"),
    (("salary expectation", "desired salary"), "Open to discussion based on total compensation"),
    (("start date", "when can you start"), "Flexible, can start within two weeks of offer"),
    (("relocation", "willing to relocate"), "Yes"),
    (("additional information", "anything else"), "Thank you for considering my application."),
)

_YES_LABELS = ["yes", "true", "1"]
_NO_LABELS = ["no", "false", "0"]


@dataclass(frozen=True)
class FieldMatch:
    field: str
    value: str
    confidence: float = MATCH_CONFIDENCE


def match_label_to_profile(label: str, profile: Profile) -> FieldMatch | None:
    """Map a form label to a profile value via the ordered pattern table."""
    lowered = collapse_whitespace(label.replace("*", "")).lower()
    if not lowered:
        return None
    for field, pattern, extractor in LABEL_PATTERNS:
        if pattern.search(lowered):
            value = extractor(profile)
            if value:
                return FieldMatch(field=field, value=value)
    return None


def authorization_answer(label: str, profile: Profile) -> bool | None:
    """Yes/no answer for work-authorization or sponsorship questions, if known."""
    lowered = label.lower()
    auth = profile.work_authorization
    if auth is None:
        return None
    if _SPONSORSHIP_PATTERN.search(lowered):
        if auth in _SPONSOR_FREE:
            return False
        if auth in _NEEDS_SPONSORSHIP:
            return True
        return None
    if _AUTHORIZED_PATTERN.search(lowered):
        return auth != WorkAuthorization.OTHER
    return None


def is_work_authorization_label(label: str) -> bool:
    lowered = label.lower()
    return bool(_AUTHORIZED_PATTERN.search(lowered)) and not _SPONSORSHIP_PATTERN.search(lowered)


async def _option_pairs(select: Any) -> list[tuple[Any, str, str]]:
    pairs = []
    for option in await select.query_selector_all("option"):
        text = collapse_whitespace(await option.text_content())
        value = await option.get_attribute("value") or ""
        pairs.append((option, text, value))
    return pairs


async def handle_dropdown(select: Any, target: str, fallbacks: list[str] | None = None) -> bool:
    """Pick an option: exact match, then contains (target + fallbacks), then word match."""
    options = await _option_pairs(select)
    target_lower = target.lower().strip()

    for _, text, value in options:
        if target_lower in (text.lower(), value.lower()):
            await select.select_option(value=value or text)
            return True

    for candidate in [target, *(fallbacks or [])]:
        needle = candidate.lower().strip()
        if not needle:
            continue
        for _, text, value in options:
            if value and (needle in text.lower() or needle in value.lower()):
                await select.select_option(value=value)
                return True

    words = [w for w in target_lower.split() if len(w) > 3]
    for _, text, value in options:
        if value and any(w in text.lower() for w in words):
            await select.select_option(value=value)
            return True

    logger.debug("No dropdown option matched '%s'", target)
    return False


async def handle_work_auth_dropdown(select: Any, work_auth: WorkAuthorization | str) -> bool:
    raw = work_auth.value if isinstance(work_auth, WorkAuthorization) else str(work_auth)
    readable = raw.replace("_", " ").lower()
    try:
        fallbacks = WORK_AUTH_SYNONYMS[WorkAuthorization(raw)]
    except ValueError:
        fallbacks = [readable, "yes", "authorized"]
    return await handle_dropdown(select, readable, fallbacks)


async def control_label_text(page: Any, control: Any) -> str:
    """Text of label[for=id], else of the enclosing label, case kept."""
    control_id = await control.get_attribute("id")
    if control_id:
        label = await page.query_selector(f'label[for="{control_id}"]')
        if label is not None:
            return collapse_whitespace(await label.text_content())
    parent = await control.query_selector("xpath=ancestor::label")
    if parent is not None:
        return collapse_whitespace(await parent.text_content())
    return ""


async def _label_text_for(page: Any, control: Any) -> str:
    return (await control_label_text(page, control)).lower()


async def handle_radio_group(page: Any, container: Any, target: str | bool) -> bool:
    """Click the radio whose value or label matches ``target``."""
    if isinstance(target, bool):
        targets = _YES_LABELS if target else _NO_LABELS
    else:
        targets = [target.lower()]
    for radio in await container.query_selector_all('input[type="radio"]'):
        value = (await radio.get_attribute("value") or "").lower()
        if value in targets:
            await radio.click()
            return True
        label_text = await _label_text_for(page, radio)
        if label_text and any(_label_matches(label_text, t) for t in targets):
            await radio.click()
            return True
    return False


def _label_matches(label_text: str, target: str) -> bool:
    # short answers like "no" must match a whole word, not "not" / "know"
    if len(target) <= 3:
        return re.search(rf"\b{re.escape(target)}\b", label_text) is not None
    return target in label_text


def _starts_with_word(text: str, word: str) -> bool:
    return re.match(rf"{word}\b", text.lower()) is not None


async def has_yes_no_options(select: Any) -> bool:
    """True when some option reads as a plain yes or no."""
    for _, text, _ in await _option_pairs(select):
        if _starts_with_word(text, "yes") or _starts_with_word(text, "no"):
            return True
    return False


async def select_yes_no_option(select: Any, answer: bool) -> bool:
    """Pick the option whose text starts with yes/no, else whose value is exactly true/1 or false/0.

    Values are never matched as substrings: "1" must not pick "H-1B Visa".
    """
    values = _YES_LABELS if answer else _NO_LABELS
    options = await _option_pairs(select)
    for _, text, value in options:
        if _starts_with_word(text, values[0]):
            await select.select_option(value=value or text)
            return True
    for _, _, value in options:
        if value and value.lower() in values:
            await select.select_option(value=value)
            return True
    return False


async def handle_yes_no_question(page: Any, container: Any, answer: bool) -> bool:
    """Answer a yes/no question via radios, falling back to a select."""
    if await handle_radio_group(page, container, answer):
        return True
    select = await container.query_selector("select")
    if select is not None:
        return await select_yes_no_option(select, answer)
    return False


async def handle_checkbox_group(checkboxes: list[Any], targets: list[str]) -> int:
    """Check boxes whose value or name contains a target. Returns newly checked count."""
    wanted = [t.lower() for t in targets]
    checked = 0
    for checkbox in checkboxes:
        value = (await checkbox.get_attribute("value") or "").lower()
        name = (await checkbox.get_attribute("name") or "").lower()
        if any(t in value or t in name for t in wanted) and not await checkbox.is_checked():
            await checkbox.click()
            checked += 1
    return checked


async def handle_required_checkbox(page: Any, label_patterns: list[str]) -> bool:
    """Check the first unchecked checkbox whose label matches a pattern."""
    for pattern in label_patterns:
        regex = re.compile(pattern, re.IGNORECASE)
        for checkbox in await page.query_selector_all('input[type="checkbox"]'):
            if await checkbox.is_checked():
                continue
            label_text = await _label_text_for(page, checkbox)
            if not label_text:
                parent = await checkbox.query_selector("xpath=..")
                if parent is not None:
                    label_text = collapse_whitespace(await parent.text_content())
            if regex.search(label_text):
                await checkbox.click()
                return True
    return False


async def handle_textarea(textarea: Any, content: str, max_length: int | None = None) -> bool:
    """Fill an empty textarea, truncated to ``max_length``. Never overwrites."""
    if (await textarea.input_value()).strip():
        return False
    await textarea.fill(content[:max_length] if max_length else content)
    return True


def generate_generic_response(label: str) -> str | None:
    lowered = label.lower()
    for fragments, answer in GENERIC_RESPONSES:
        if any(f in lowered for f in fragments):
            return answer
    if "why" in lowered and "company" in lowered:
        return "Excited about the opportunity to contribute to the team and grow professionally"
    return None


async def detect_field_type(element: Any) -> str:
    """One of text, email, tel, select, textarea, radio, checkbox, file, other."""
    tag = await element.evaluate(TAG_NAME_JS)
    if tag in ("select", "textarea"):
        return tag
    if tag == "input":
        input_type = (await element.get_attribute("type") or "text").lower()
        if input_type in ("email", "tel", "radio", "checkbox", "file"):
            return input_type
        return "text"
    return "other"
