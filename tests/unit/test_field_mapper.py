"""Tests for label-to-profile mapping and the form control helpers."""

import pytest

from apply_worker.core.schemas import Profile, WorkAuthorization
from apply_worker.platforms.field_mapper import (
    MATCH_CONFIDENCE,
    authorization_answer,
    control_label_text,
    detect_field_type,
    generate_generic_response,
    handle_checkbox_group,
    handle_dropdown,
    handle_radio_group,
    handle_required_checkbox,
    handle_textarea,
    handle_work_auth_dropdown,
    handle_yes_no_question,
    has_yes_no_options,
    is_work_authorization_label,
    match_label_to_profile,
    select_yes_no_option,
)
from tests.fakes import FakeElement, FakePage, radio_group, select


def _profile(**kw: object) -> Profile:
    defaults: dict[str, object] = {
        "user_id": "u1",
        "full_name": "Ada Byron Lovelace",
        "email": "ada@example.com",
        "phone": "+1 555 0100",
        "location_city": "Austin",
        "location_state": "TX",
        "linkedin_url": "https://linkedin.com/in/ada",
        "work_authorization": WorkAuthorization.US_CITIZEN,
    }
    defaults.update(kw)
    return Profile(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# TestMatchLabelToProfile
# ---------------------------------------------------------------------------


class TestMatchLabelToProfile:
    @pytest.mark.parametrize(("label", "field", "value"), [
        ("First Name *", "first_name", "Ada"),
        ("Given name", "first_name", "Ada"),
        ("Last Name", "last_name", "Byron Lovelace"),
        ("Surname", "last_name", "Byron Lovelace"),
        ("Full Name", "full_name", "Ada Byron Lovelace"),
        ("Name", "full_name", "Ada Byron Lovelace"),
        ("E-mail address", "email", "ada@example.com"),
        ("Mobile phone", "phone", "+1 555 0100"),
        ("LinkedIn Profile", "linkedin_url", "https://linkedin.com/in/ada"),
        ("City", "location_city", "Austin"),
        ("State / Province", "location_state", "TX"),
        ("Current location", "location", "Austin, TX"),
        ("Country", "location_country", "United States"),
    ])
    def test_matches(self, label: str, field: str, value: str) -> None:
        match = match_label_to_profile(label, _profile())
        assert match is not None
        assert (match.field, match.value) == (field, value)
        assert match.confidence == MATCH_CONFIDENCE

    def test_other_name_labels_ignored(self) -> None:
        """'Company name' must not be treated as the applicant's name."""
        assert match_label_to_profile("Company name", _profile()) is None

    def test_missing_value_falls_through(self) -> None:
        assert match_label_to_profile("GitHub URL", _profile()) is None
        match = match_label_to_profile("GitHub URL", _profile(github_url="https://github.com/ada"))
        assert match is not None and match.value == "https://github.com/ada"

    def test_unknown_label(self) -> None:
        assert match_label_to_profile("Years of experience", _profile()) is None
        assert match_label_to_profile("   ", _profile()) is None

    def test_sponsorship_value(self) -> None:
        match = match_label_to_profile("Visa sponsorship", _profile())
        assert match is not None and match.value == "No"
        match = match_label_to_profile("Visa sponsorship", _profile(work_authorization=WorkAuthorization.H1B))
        assert match is not None and match.value == "Yes"
        assert match_label_to_profile("Visa sponsorship", _profile(work_authorization=None)) is None


class TestAuthorizationAnswer:
    def test_authorized_to_work(self) -> None:
        label = "Are you legally authorized to work in the United States?"
        assert authorization_answer(label, _profile()) is True
        assert authorization_answer(label, _profile(work_authorization=WorkAuthorization.OTHER)) is False

    @pytest.mark.parametrize(("auth", "expected"), [
        (WorkAuthorization.US_CITIZEN, False),
        (WorkAuthorization.GREEN_CARD, False),
        (WorkAuthorization.PERMANENT_RESIDENT, False),
        (WorkAuthorization.H1B, True),
        (WorkAuthorization.OPT, True),
        (WorkAuthorization.VISA_HOLDER, True),
        (WorkAuthorization.EAD, None),
    ])
    def test_sponsorship(self, auth: WorkAuthorization, expected: bool | None) -> None:
        label = "Will you now or in the future require sponsorship?"
        assert authorization_answer(label, _profile(work_authorization=auth)) is expected

    def test_unknown_authorization(self) -> None:
        assert authorization_answer("Require sponsorship?", _profile(work_authorization=None)) is None

    def test_unrelated_question(self) -> None:
        assert authorization_answer("Why do you want to work here?", _profile()) is None


# ---------------------------------------------------------------------------
# TestControls
# ---------------------------------------------------------------------------


class TestHandleDropdown:
    async def test_exact_match(self) -> None:
        s = select(("", "Select..."), ("us", "United States"), ("ca", "Canada"))
        assert await handle_dropdown(s, "United States") is True
        assert s.value == "us"

    async def test_contains_match_via_fallback(self) -> None:
        s = select(("", "Select..."), ("1", "Yes, I am authorized"), ("0", "No"))
        assert await handle_dropdown(s, "us citizen", ["authorized"]) is True
        assert s.value == "1"

    async def test_word_match(self) -> None:
        s = select(("", "--"), ("a", "Bachelor's degree"), ("b", "Master's degree"))
        assert await handle_dropdown(s, "masters program") is False
        assert await handle_dropdown(s, "Master of Science") is True
        assert s.value == "b"

    async def test_no_match(self) -> None:
        s = select(("", "Select..."), ("x", "Something"))
        assert await handle_dropdown(s, "Nothing here") is False
        assert s.value == ""

    async def test_work_auth_synonyms(self) -> None:
        s = select(("", "Select..."), ("pr", "Green card holder"), ("v", "Requires visa"))
        assert await handle_work_auth_dropdown(s, WorkAuthorization.PERMANENT_RESIDENT) is True
        assert s.value == "pr"


class TestRadioGroups:
    async def test_matches_by_value(self) -> None:
        container = FakeElement("div").add('input[type="radio"]', *radio_group(("yes", "Yes"), ("no", "No")))
        assert await handle_radio_group(FakePage(), container, "no") is True
        radios = await container.query_selector_all('input[type="radio"]')
        assert [r.checked for r in radios] == [False, True]

    async def test_matches_by_label_word(self) -> None:
        radios = radio_group(("1", "I do not know"), ("2", "No"), name="q2")
        container = FakeElement("div").add('input[type="radio"]', *radios)
        assert await handle_radio_group(FakePage(), container, False) is True
        assert radios[1].checked is True
        assert radios[0].checked is False

    async def test_label_for_id(self) -> None:
        radio = FakeElement(attrs={"type": "radio", "id": "r1", "value": "a"})
        container = FakeElement("div").add('input[type="radio"]', radio)
        page = FakePage().add('label[for="r1"]', FakeElement("label", text="Remote"))
        assert await handle_radio_group(page, container, "remote") is True

    async def test_yes_no_falls_back_to_select(self) -> None:
        s = select(("", "Select..."), ("true", "Yes"), ("false", "No"))
        container = FakeElement("div").add("select", s)
        assert await handle_yes_no_question(FakePage(), container, True) is True
        assert s.value == "true"

    async def test_yes_no_nothing_to_answer(self) -> None:
        assert await handle_yes_no_question(FakePage(), FakeElement("div"), True) is False

    async def test_yes_no_select_never_matches_digits_inside_text(self) -> None:
        s = select(("", "Select..."), ("a", "H-1B Visa"), ("b", "US Citizen"))
        container = FakeElement("div").add("select", s)
        assert await handle_yes_no_question(FakePage(), container, True) is False
        assert s.value == ""

    async def test_yes_no_select_by_exact_value(self) -> None:
        s = select(("", "Select..."), ("1", "I am authorized"), ("0", "I am not authorized"))
        assert await select_yes_no_option(s, False) is True
        assert s.value == "0"

    async def test_yes_no_select_by_leading_word(self) -> None:
        s = select(("", "Select..."), ("n", "Not applicable"), ("y", "Yes, I am"), ("x", "No."))
        assert await select_yes_no_option(s, False) is True
        assert s.value == "x"
        assert await has_yes_no_options(s) is True
        assert await has_yes_no_options(select(("1", "H-1B Visa"), ("2", "None"))) is False


class TestWorkAuthorizationLabel:
    @pytest.mark.parametrize(("label", "expected"), [
        ("What is your current work authorization status?", True),
        ("Are you legally authorized to work in the US?", True),
        ("Will you require sponsorship for work authorization?", False),
        ("Years of experience", False),
    ])
    def test_label(self, label: str, expected: bool) -> None:
        assert is_work_authorization_label(label) is expected


class TestControlLabelText:
    async def test_keeps_case(self) -> None:
        radio = FakeElement(attrs={"type": "radio", "id": "r1"})
        page = FakePage().add('label[for="r1"]', FakeElement("label", text="  Remote   only "))
        assert await control_label_text(page, radio) == "Remote only"

    async def test_no_label(self) -> None:
        assert await control_label_text(FakePage(), FakeElement(attrs={"type": "radio"})) == ""


class TestCheckboxes:
    async def test_group_is_idempotent(self) -> None:
        boxes = [
            FakeElement(attrs={"type": "checkbox", "value": "python"}),
            FakeElement(attrs={"type": "checkbox", "value": "rust"}),
            FakeElement(attrs={"type": "checkbox", "name": "skills_go", "value": "1"}),
        ]
        assert await handle_checkbox_group(boxes, ["Python", "go"]) == 2
        assert await handle_checkbox_group(boxes, ["Python", "go"]) == 0
        assert [b.checked for b in boxes] == [True, False, True]

    async def test_required_checkbox_by_label(self) -> None:
        other = FakeElement(attrs={"type": "checkbox", "id": "news"})
        terms = FakeElement(attrs={"type": "checkbox", "id": "terms"})
        page = (
            FakePage()
            .add('input[type="checkbox"]', other, terms)
            .add('label[for="news"]', FakeElement("label", text="Send me newsletters"))
            .add('label[for="terms"]', FakeElement("label", text="I agree to the Terms"))
        )
        assert await handle_required_checkbox(page, [r"agree to the terms"]) is True
        assert terms.checked is True
        assert other.checked is False

    async def test_required_checkbox_parent_text(self) -> None:
        box = FakeElement(attrs={"type": "checkbox"})
        box.add("xpath=..", FakeElement("div", text="I acknowledge the privacy notice"))
        page = FakePage().add('input[type="checkbox"]', box)
        assert await handle_required_checkbox(page, [r"privacy"]) is True
        assert await handle_required_checkbox(page, [r"privacy"]) is False


class TestTextarea:
    async def test_truncates(self) -> None:
        t = FakeElement("textarea")
        assert await handle_textarea(t, "abcdef", max_length=3) is True
        assert t.value == "abc"

    async def test_never_overwrites(self) -> None:
        t = FakeElement("textarea", value="typed by the user")
        assert await handle_textarea(t, "generic") is False
        assert t.value == "typed by the user"


class TestGenericResponses:
    def test_known_prompts(self) -> None:
        assert generate_generic_response("How did you hear about us?") == "Online job search"
        assert generate_generic_response("Why this company?") is not None

    def test_unknown_prompt(self) -> None:
        assert generate_generic_response("Favourite colour") is None


class TestDetectFieldType:
    @pytest.mark.parametrize(("element", "expected"), [
        (FakeElement("select"), "select"),
        (FakeElement("textarea"), "textarea"),
        (FakeElement(attrs={"type": "email"}), "email"),
        (FakeElement(attrs={"type": "checkbox"}), "checkbox"),
        (FakeElement(attrs={"type": "number"}), "text"),
        (FakeElement(), "text"),
        (FakeElement("div"), "other"),
    ])
    async def test_types(self, element: FakeElement, expected: str) -> None:
        assert await detect_field_type(element) == expected
