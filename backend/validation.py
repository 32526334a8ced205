"""Declarative payload rule sets.

Every write route checks its JSON body against one of the rule sets below
before any persistence call. ``validate`` walks the rules in declaration order
and reports only the first violation, phrased for the client.
"""

import math
import re
from typing import Dict, Optional

from .errors import ValidationError

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MOBILE_PHONE_REGEX = re.compile(r"^(\+972|0)?5\d{8}$")

USER_ROLES = ("admin", "customer", "customer_support", "seller")
STAFF_POSITIONS = ("manager", "staff", "support")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_BYTES = 72


class RuleSet:
    def __init__(self, fields: Dict[str, Dict], *, require_any: bool = False):
        self.fields = fields
        self.require_any = require_any


def field(kind: str, required: bool = False, **constraints) -> Dict:
    rule = {"kind": kind, "required": required}
    rule.update(constraints)
    return rule


def nested(rule_set: RuleSet, required: bool = False) -> Dict:
    return field("object", required, rules=rule_set)


IMAGE_RULES = RuleSet(
    {
        "url": field("string", allow_empty=True),
        "alt": field("string", allow_empty=True),
    }
)

ADDRESS_RULES = RuleSet(
    {
        "city": field("string", required=True),
        "street": field("string", required=True),
        "houseNo": field("string", allow_empty=True),
        "zipCode": field("string", allow_empty=True),
    }
)

PROFILE_RULES = RuleSet(
    {
        "firstName": field("string", required=True),
        "lastName": field("string", required=True),
        "phone": field("string", required=True, pattern=MOBILE_PHONE_REGEX),
        "avatar": nested(IMAGE_RULES),
        "position": field("string", choices=STAFF_POSITIONS, allow_empty=True),
        "address": nested(ADDRESS_RULES),
    }
)

REGISTRATION_RULES = RuleSet(
    {
        "email": field("string", required=True, email=True),
        "password": field(
            "string",
            required=True,
            min_length=PASSWORD_MIN_LENGTH,
            max_bytes=PASSWORD_MAX_BYTES,
        ),
        "profile": nested(PROFILE_RULES, required=True),
        "role": field("string", required=True, choices=USER_ROLES),
    }
)

LOGIN_RULES = RuleSet(
    {
        "email": field("string", required=True),
        "password": field("string", required=True),
    }
)

SALES_RULES = RuleSet({"isSale": field("boolean", required=True)})


def _product_fields(required: bool) -> Dict[str, Dict]:
    return {
        "product_name": field("string", required=required),
        "category": field("string", required=required),
        "manufacturer": field("string", required=required),
        "description": field("string", allow_empty=True),
        "price": field("number", required=required, min=0),
        "discount": field("number", min=0, max=100),
        "quantity_in_stock": field("integer", required=required, min=0),
        "image": nested(IMAGE_RULES),
        "sales": nested(SALES_RULES),
    }


PRODUCT_CREATE_RULES = RuleSet(_product_fields(required=True))
PRODUCT_UPDATE_RULES = RuleSet(_product_fields(required=False), require_any=True)
PRODUCT_RENAME_RULES = RuleSet({"product_name": field("string", required=True)})

USER_ADMIN_UPDATE_RULES = RuleSet(
    {
        "role": field("string", choices=USER_ROLES),
        "isActive": field("boolean"),
    },
    require_any=True,
)

RULE_SETS = {
    "registration": REGISTRATION_RULES,
    "login": LOGIN_RULES,
    "product-create": PRODUCT_CREATE_RULES,
    "product-update": PRODUCT_UPDATE_RULES,
    "product-rename": PRODUCT_RENAME_RULES,
    "user-admin-update": USER_ADMIN_UPDATE_RULES,
}


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_string(label: str, value, rule: Dict) -> Optional[str]:
    if not isinstance(value, str):
        return f'"{label}" must be a string'
    if not value.strip():
        if rule.get("allow_empty"):
            return None
        return f'"{label}" is not allowed to be empty'

    min_length = rule.get("min_length")
    if min_length and len(value) < min_length:
        return f'"{label}" length must be at least {min_length} characters long'
    max_bytes = rule.get("max_bytes")
    if max_bytes and len(value.encode("utf-8")) > max_bytes:
        return f'"{label}" must not be longer than {max_bytes} bytes'
    if rule.get("email") and not EMAIL_REGEX.match(value.strip()):
        return f'"{label}" must be a valid email'
    pattern = rule.get("pattern")
    if pattern is not None and not pattern.match(value):
        return f'"{label}" with value "{value}" fails to match the required pattern'
    choices = rule.get("choices")
    if choices and value not in choices:
        return f'"{label}" must be one of [{", ".join(choices)}]'
    return None


def _check_bounds(label: str, value, rule: Dict) -> Optional[str]:
    if "min" in rule and value < rule["min"]:
        return f'"{label}" must be greater than or equal to {rule["min"]}'
    if "max" in rule and value > rule["max"]:
        return f'"{label}" must be less than or equal to {rule["max"]}'
    return None


def _check_value(label: str, value, rule: Dict) -> Optional[str]:
    kind = rule["kind"]
    if kind == "string":
        return _check_string(label, value, rule)
    if kind == "number":
        if not _is_number(value):
            return f'"{label}" must be a number'
        return _check_bounds(label, value, rule)
    if kind == "integer":
        if isinstance(value, bool) or not isinstance(value, int):
            return f'"{label}" must be an integer'
        return _check_bounds(label, value, rule)
    if kind == "boolean":
        if not isinstance(value, bool):
            return f'"{label}" must be a boolean'
        return None
    if kind == "object":
        return _validate_object(value, rule["rules"], prefix=label)
    raise ValueError(f"Unknown rule kind: {kind}")


def _validate_object(payload, rule_set: RuleSet, prefix: str = "") -> Optional[str]:
    label = prefix or "value"
    if not isinstance(payload, dict):
        return f'"{label}" must be of type object'

    for key in payload:
        if key not in rule_set.fields:
            qualified = f"{prefix}.{key}" if prefix else key
            return f'"{qualified}" is not allowed'

    if rule_set.require_any and not any(
        payload.get(key) is not None for key in rule_set.fields
    ):
        return f'"{label}" must have at least 1 key'

    for key, rule in rule_set.fields.items():
        qualified = f"{prefix}.{key}" if prefix else key
        value = payload.get(key)
        if value is None:
            if rule["required"]:
                return f'"{qualified}" is required'
            continue
        error = _check_value(qualified, value, rule)
        if error:
            return error
    return None


def validate(payload, rules) -> Optional[str]:
    """Return the first violation of ``rules`` in ``payload``, or ``None``.

    ``rules`` is either a ``RuleSet`` or the name of one in ``RULE_SETS``.
    Pure check, nothing is mutated.
    """
    rule_set = RULE_SETS[rules] if isinstance(rules, str) else rules
    return _validate_object(payload, rule_set)


def require_valid(payload, rules) -> Dict:
    error = validate(payload, rules)
    if error:
        raise ValidationError(error)
    return payload
