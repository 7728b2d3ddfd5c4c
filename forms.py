"""
Multi-step create forms as a small finite-state model.

A ``FormWizard`` walks an ordered tuple of ``FormStep`` definitions. Each
``advance(data)`` merges the submitted fields, checks the current step's
required fields against everything collected so far and moves to the next
step; ``back()`` moves one step back without discarding data. Once every step
has been passed the wizard ``is_complete`` and ``payload()`` returns the merged
submission.

The API receives a whole form in one request, so routes use
``validate_submission`` to run all steps at once.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from errors import ValidationFailed

Condition = Callable[[Dict[str, Any]], bool]


def _lookup(data: Dict[str, Any], path: str) -> Any:
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _merge(target: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value
    return target


class FormStep:
    """One page of a form: a name, required fields and conditionally required ones.

    Field names may be dotted (``location.address``) to reach into nested
    objects. ``required_when`` maps a field to a predicate over the collected
    data; the field is required only when the predicate holds.
    """

    def __init__(self, name: str, required: Iterable[str] = (), required_when: Optional[Dict[str, Condition]] = None):
        self.name = name
        self.required = tuple(required)
        self.required_when = dict(required_when or {})

    def missing(self, data: Dict[str, Any]) -> List[str]:
        fields = list(self.required)
        fields += [field for field, condition in self.required_when.items() if condition(data)]
        return [field for field in fields if _is_blank(_lookup(data, field))]

    def __repr__(self):
        return f"FormStep({self.name!r})"


class FormDefinition:
    def __init__(self, name: str, steps: Sequence[FormStep], message: Optional[str] = None):
        self.name = name
        self.steps = tuple(steps)
        # fixed error message; None lists the missing fields
        self.message = message

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def start(self, initial: Optional[Dict[str, Any]] = None) -> "FormWizard":
        return FormWizard(self, initial)


class FormWizard:
    def __init__(self, definition: FormDefinition, initial: Optional[Dict[str, Any]] = None):
        self.definition = definition
        self.index = 0
        self.data: Dict[str, Any] = _merge({}, initial or {})

    @property
    def is_complete(self) -> bool:
        return self.index >= len(self.definition.steps)

    @property
    def current_step(self) -> Optional[FormStep]:
        if self.is_complete:
            return None
        return self.definition.steps[self.index]

    def advance(self, data: Optional[Dict[str, Any]] = None) -> Optional[FormStep]:
        """Validate the current step with ``data`` merged in and move forward.

        Returns the new current step (None when complete). Raises
        ``ValidationFailed`` listing the missing fields and stays put.
        """
        if self.is_complete:
            raise ValidationFailed("Form is already complete")
        if data:
            _merge(self.data, data)
        step = self.current_step
        missing = step.missing(self.data)
        if missing:
            message = self.definition.message or f"Missing required fields: {', '.join(missing)}"
            raise ValidationFailed(message, step=step.name, fields=missing)
        self.index += 1
        return self.current_step

    def back(self) -> Optional[FormStep]:
        if self.index > 0:
            self.index -= 1
        return self.current_step

    def payload(self) -> Dict[str, Any]:
        if not self.is_complete:
            raise ValidationFailed(f"Form incomplete at step '{self.current_step.name}'")
        return dict(self.data)


def validate_submission(definition: FormDefinition, data: Dict[str, Any]) -> Dict[str, Any]:
    wizard = definition.start(data)
    while not wizard.is_complete:
        wizard.advance()
    return wizard.payload()


def _is_missing_post(data: Dict[str, Any]) -> bool:
    return data.get("postType") == "missing"


PET_POST_WIZARD = FormDefinition("pet_post", (
    FormStep("details", ("title", "postType", "petName", "petType", "description"),
             required_when={"lastSeenDate": _is_missing_post}),
    FormStep("location", ("location",)),
    FormStep("contact"),
))

FOSTER_WIZARD = FormDefinition("foster", (
    FormStep("pet_information", ("petName", "petType", "description")),
    FormStep("foster_details", ("fosterType", "duration", "startDate")),
    FormStep("requirements"),
    FormStep("medical"),
    FormStep("location"),
))

ADOPTION_WIZARD = FormDefinition("adoption", (
    FormStep("pet_information", ("petType", "description")),
    FormStep("adoption_details", ("adoptionType",)),
    FormStep("medical_status"),
    FormStep("temperament"),
    FormStep("requirements"),
))

ALERT_FORM = FormDefinition("alert", (
    FormStep("alert", ("title", "description", "location.address", "location.city", "location.state")),
), message="Please fill in all required fields")
