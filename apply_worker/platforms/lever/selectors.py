"""Lever (jobs.lever.co) DOM selectors with fallbacks.

Lever keys its main fields by ``name`` attribute, so those come first.
Each constant is a tuple so callers iterate until a match is found.
"""

from apply_worker.platforms.base import FormSelectors

APPLY_BUTTON: tuple[str, ...] = (
    "a.postings-btn",
    "a.postings-btn-wrapper",
    'a[href*="/apply"]',
    ".apply-button a",
    'button:has-text("Apply for this job")',
    'button:has-text("Apply now")',
    'a:has-text("Apply")',
)

FORM: tuple[str, ...] = ("form.application-form", ".application-page form", "form")
FORM_INPUTS: tuple[str, ...] = ('input[name="name"]', 'input[name="email"]')

SUBMIT: tuple[str, ...] = (
    'button[type="submit"]',
    "button.postings-btn",
    'button:has-text("Submit application")',
    'button:has-text("Submit")',
    'input[type="submit"]',
)

# --- Uploads (Lever wraps the file input in a drop zone) ---
RESUME_INPUT: tuple[str, ...] = (
    'input[type="file"][name="resume"]',
    'input[type="file"].resume-upload',
    '.resume-upload-input input[type="file"]',
    'input[type="file"]',
)
COVER_LETTER_INPUT: tuple[str, ...] = (
    'input[type="file"][name="coverLetter"]',
    '.cover-letter-upload input[type="file"]',
)

# --- Profile fields ---
FULL_NAME: tuple[str, ...] = ('input[name="name"]', 'input[id="name"]', 'input[placeholder*="Full name" i]')
EMAIL: tuple[str, ...] = ('input[name="email"]', 'input[type="email"]', 'input[id="email"]')
PHONE: tuple[str, ...] = ('input[name="phone"]', 'input[type="tel"]', 'input[id="phone"]')
LINKEDIN: tuple[str, ...] = (
    'input[name="urls[LinkedIn]"]',
    'input[name*="linkedin"]',
    'input[placeholder*="linkedin" i]',
)
GITHUB: tuple[str, ...] = (
    'input[name="urls[GitHub]"]',
    'input[name*="github"]',
    'input[placeholder*="github" i]',
)
PORTFOLIO: tuple[str, ...] = (
    'input[name="urls[Portfolio]"]',
    'input[name*="portfolio"]',
    'input[name*="website"]',
)
LOCATION: tuple[str, ...] = (
    'input[name="location"]',
    'input[id="location"]',
    'input[placeholder*="location" i]',
)

# --- Custom questions and validation ---
QUESTION_CONTAINERS: tuple[str, ...] = (".custom-question", ".application-question", '[data-qa="question"]')
QUESTION_LABEL: tuple[str, ...] = ("label", ".question-label", ".question-text")
ERROR_ELEMENTS: tuple[str, ...] = (".error", ".error-message", ".field-error", ".validation-error")

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
