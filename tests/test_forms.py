import pytest

from errors import ValidationFailed
from forms import ALERT_FORM, FOSTER_WIZARD, PET_POST_WIZARD, validate_submission


def test_pet_post_wizard_walks_steps():
    wizard = PET_POST_WIZARD.start()
    assert wizard.current_step.name == "details"

    with pytest.raises(ValidationFailed) as exc:
        wizard.advance({"title": "Lost cat", "postType": "missing", "petName": "Tom", "petType": "Cat", "description": "Grey"})
    assert exc.value.extra["fields"] == ["lastSeenDate"]
    assert wizard.current_step.name == "details"

    assert wizard.advance({"lastSeenDate": "2024-05-01"}).name == "location"
    assert wizard.advance({"location": {"address": "Market"}}).name == "contact"
    assert wizard.back().name == "location"
    wizard.advance()
    wizard.advance({"contactPhone": "0917"})

    assert wizard.is_complete
    payload = wizard.payload()
    assert payload["petName"] == "Tom"
    assert payload["location"] == {"address": "Market"}
    assert payload["contactPhone"] == "0917"


def test_last_seen_date_only_required_for_missing():
    data = {"title": "Hurt dog", "postType": "wounded", "petName": "Unknown", "petType": "Dog",
            "description": "Limping", "location": {"address": "Bridge"}}
    assert validate_submission(PET_POST_WIZARD, data)["postType"] == "wounded"


def test_payload_before_completion_fails():
    wizard = FOSTER_WIZARD.start()
    with pytest.raises(ValidationFailed):
        wizard.payload()
    assert FOSTER_WIZARD.step_names == ["pet_information", "foster_details", "requirements", "medical", "location"]


def test_nested_fields_and_blank_strings():
    wizard = ALERT_FORM.start()
    with pytest.raises(ValidationFailed) as exc:
        wizard.advance({"title": "Lost", "description": "  ", "location": {"address": "A", "city": "B"}})
    assert exc.value.message == "Please fill in all required fields"
    assert exc.value.extra["fields"] == ["description", "location.state"]

    wizard.advance({"description": "Found", "location": {"state": "C"}})
    assert wizard.is_complete
    assert wizard.payload()["location"] == {"address": "A", "city": "B", "state": "C"}
