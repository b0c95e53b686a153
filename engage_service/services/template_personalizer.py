"""
Template personalisation for campaign sends.

Builds the ContentVariables payload for one contact. Values come from
three layers: sample variables stored with the synced template, the
campaign's own variables, and (when the campaign draws from contacts)
the contact record.

The template's original body text fixes the variable order; positional
slots {"1": ..., "2": ...} are filled in that order and then mapped back
to the variable names Twilio expects.
"""

import re
from typing import Any, Dict, List

_NUMERIC_PLACEHOLDER = re.compile(r"\{\{(\d+)\}\}")
_NAMED_PLACEHOLDER = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}")


def _sample_variables(template) -> Dict[str, Any]:
    return (template.twilio_metadata or {}).get("variables") or {}


def _original_body(template) -> str:
    return (template.twilio_metadata or {}).get("original_body_text") or ""


def _key_order(key: str):
    return (0, int(key), "") if key.isdigit() else (1, 0, key)


def _slot_order(key: str):
    # Integer-like keys first in ascending order; other keys keep insertion order
    return (0, int(key)) if key.isdigit() else (1, 0)


def extract_variable_order(original_body_text: str, sample_variables: Dict[str, Any]) -> List[str]:
    """
    Work out the template's variable names in slot order.

    1. Numeric placeholders ({{1}}, {{2}}) sorted numerically, each mapped to
       the sample variable key at that position (or the number itself).
       Integer-like sample keys come first in ascending order, so {"2", "1"}
       still maps {{1}} to "1".
    2. Otherwise named placeholders ({{first_name}}) in order of first
       appearance.
    3. Otherwise the sample variable keys, numeric keys first in numeric
       order, then the rest alphabetically.
    """
    text = original_body_text or ""
    sample_keys = sorted((sample_variables or {}).keys(), key=_slot_order)

    numeric = _NUMERIC_PLACEHOLDER.findall(text)
    if numeric:
        order = []
        for number in sorted(set(numeric), key=int):
            index = int(number) - 1
            order.append(sample_keys[index] if 0 <= index < len(sample_keys) else number)
        return order

    named = _NAMED_PLACEHOLDER.findall(text)
    if named:
        return list(dict.fromkeys(named))

    return sorted(sample_keys, key=_key_order)


def contact_variables(contact) -> Dict[str, Any]:
    """Variables derived from a contact record."""
    custom_fields = contact.custom_fields or {}
    name = contact.name or ""
    parts = name.split(" ") if name else []
    company = custom_fields.get("company_name") or custom_fields.get("company") or ""

    data = {
        "name": name or "Customer",
        "first_name": parts[0] if parts else "Customer",
        "last_name": " ".join(parts[1:]),
        "email": contact.email or "",
        "phone": contact.phone_number,
        "phone_number": contact.phone_number,
        "company_name": company,
        "company": company,
    }
    data.update(custom_fields)
    return data


def build_template_data(template, campaign, contact) -> Dict[str, Any]:
    """
    Merge the variable layers for one contact.

    contact source: samples < campaign variables < contact data
    manual source:  contact name < samples < campaign variables
    """
    samples = _sample_variables(template)
    campaign_variables = campaign.template_variables or {}

    if campaign.variable_source == "contact":
        data: Dict[str, Any] = {}
        data.update(samples)
        data.update(campaign_variables)
        data.update(contact_variables(contact))
        return data

    data = {"name": contact.name or "Customer"}
    data.update(samples)
    data.update(campaign_variables)
    return data


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def variable_order_for(template) -> List[str]:
    """Slot order for a template, falling back to its declared variables."""
    order = []
    if _original_body(template):
        order = extract_variable_order(_original_body(template), _sample_variables(template))
    return order or list(template.variables or [])


def personalize(template, campaign, contact) -> Dict[str, str]:
    """
    Positional variables {"1": value, ...} for one contact.

    Real data wins over the template's sample value; a variable with
    neither becomes an empty string.
    """
    data = build_template_data(template, campaign, contact)
    samples = _sample_variables(template)
    personalized: Dict[str, str] = {}

    if _original_body(template):
        order = extract_variable_order(_original_body(template), samples)
        if order:
            for index, variable in enumerate(order):
                value = data.get(variable)
                if value in (None, ""):
                    value = samples.get(variable, "")
                personalized[str(index + 1)] = _as_text(value)
            return personalized

    for index, variable in enumerate(template.variables or []):
        personalized[str(index + 1)] = _as_text(data.get(variable) or "")
    return personalized


def to_named_variables(positional: Dict[str, str], order: List[str]) -> Dict[str, str]:
    """Map positional slots back to variable names; slots without a name are dropped."""
    named: Dict[str, str] = {}
    for key, value in positional.items():
        index = int(key) - 1
        if 0 <= index < len(order):
            named[order[index]] = value
    return named


def find_missing_variables(variables: List[str], data: Dict[str, Any]) -> List[str]:
    """Names whose value is missing or blank."""
    return [v for v in variables if not _as_text(data.get(v)).strip()]
