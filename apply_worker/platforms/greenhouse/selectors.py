"""Greenhouse (boards.greenhouse.io) DOM selectors with fallbacks.

Ordered by stability: id > name/data-* > text matches.
Each constant is a tuple so callers iterate until a match is found.
"""

from apply_worker.platforms.base import FormSelectors

# --- Entry point on the job description page ---
APPLY_BUTTON: tuple[str, ...] = (
    "#apply_button",
    "a[data-job-apply-button]",
    'a[href*="#app"]',
    'a:has-text("Apply for this job")',
    'a:has-text("Apply Now")',
    'button:has-text("Apply")',
)

# --- Form container and a field proving it is the application form ---
FORM: tuple[str, ...] = ("#application_form", "form#job_application", "form")
FORM_INPUTS: tuple[str, ...] = (
    'input[name*="first_name"]',
    "#first_name",
    'input[type="email"]',
)

SUBMIT: tuple[str, ...] = (
    "#submit_app",
    'button[type="submit"]:has-text("Submit")',
    'input[type="submit"][value*="Submit"]',
    'button:has-text("Submit Application")',
)

# --- Uploads ---
RESUME_INPUT: tuple[str, ...] = (
    'input[type="file"][name*="resume"]',
    'input[type="file"][id*="resume"]',
    'input[type="file"][data-field="resume"]',
    "#resume_input",
    'input[type="file"]',
)
COVER_LETTER_INPUT: tuple[str, ...] = (
    'input[type="file"][name*="cover_letter"]',
    'input[type="file"][id*="cover_letter"]',
    'input[type="file"][data-field="cover_letter"]',
)

# --- Profile fields ---
FIRST_NAME: tuple[str, ...] = ('input[name*="first_name"]', 'input[id*="first_name"]', "#first_name")
LAST_NAME: tuple[str, ...] = ('input[name*="last_name"]', 'input[id*="last_name"]', "#last_name")
EMAIL: tuple[str, ...] = ('input[name*="email"]', 'input[type="email"]', "#email")
PHONE: tuple[str, ...] = ('input[name*="phone"]', 'input[type="tel"]', "#phone")
LINKEDIN: tuple[str, ...] = (
    'input[name*="linkedin"]',
    'input[id*="linkedin"]',
    'input[placeholder*="linkedin" i]',
    'input[aria-label*="linkedin" i]',
)
GITHUB: tuple[str, ...] = ('input[name*="github"]', 'input[id*="github"]', 'input[placeholder*="github" i]')
WEBSITE: tuple[str, ...] = ('input[name*="website"]', 'input[id*="website"]', 'input[name*="portfolio"]')
LOCATION: tuple[str, ...] = ('input[name*="location"]', 'input[id*="location"]')
CITY: tuple[str, ...] = ('input[name*="city"]', 'input[id*="city"]')
STATE: tuple[str, ...] = ('input[name*="state"]', 'input[id*="state"]')
COUNTRY: tuple[str, ...] = (
    'select[name*="country"]',
    'select[id*="country"]',
    'input[name*="country"]',
    'input[id*="country"]',
)
WORK_AUTH: tuple[str, ...] = (
    'select[name*="authorization"]',
    'select[id*="authorization"]',
    'select[name*="legally_authorized"]',
)

# --- Custom questions and validation ---
QUESTION_CONTAINERS: tuple[str, ...] = (".field", ".question-container", "[data-question-id]")
QUESTION_LABEL: tuple[str, ...] = ("label", ".label", ".question-label")
ERROR_ELEMENTS: tuple[str, ...] = (".error", ".field-error", ".error-message", '[class*="error"]')

# Required acknowledgement checkboxes (label text patterns)
CONSENT_PATTERNS: tuple[str, ...] = (
    r"i (?:have read|acknowledge|agree)",
    r"privacy (?:policy|notice)",
)

FORM_SELECTORS = FormSelectors(
    apply_button=APPLY_BUTTON,
    form=FORM,
    form_inputs=FORM_INPUTS,
    submit=SUBMIT,
    resume_input=RESUME_INPUT,
    cover_letter_input=COVER_LETTER_INPUT,
    question_containers=QUESTION_CONTAINERS,
    question_label=QUESTION_LABEL,
    error_elements=ERROR_ELEMENTS,
)
