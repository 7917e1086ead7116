"""Request body validation for routes that declare a ``validation`` schema.

Two schema shapes are supported:

* a mapping of field name to Chirp validators, checked with
  ``chirp.validation.validate``::

      from chirp.validation import required, max_length

      validation = {"name": [required, max_length(80)]}

* a callable taking the body and returning the normalized body, raising
  on invalid input (sync or async)::

      def validation(body):
          return Signup(**body)

Either way a failure surfaces as ``perch.ValidationError``.
"""

import inspect
from collections.abc import Mapping
from typing import Any

from perch._errors import PerchError, ValidationError


async def validate_body(body: Any, schema: Any) -> Any:
    """Validate *body* against *schema* and return the normalized body.

    Raises:
        ValidationError: If the body does not satisfy the schema.
        TypeError: If *schema* is neither a mapping nor callable.

    """
    if isinstance(schema, Mapping):
        return _validate_rules(body, schema)

    if callable(schema):
        try:
            result = schema(body)
            if inspect.isawaitable(result):
                result = await result
        except PerchError:
            raise
        except Exception as exc:
            raise ValidationError(str(exc)) from exc
        return result

    msg = f"Unsupported validation schema type: {type(schema).__name__}"
    raise TypeError(msg)


def _validate_rules(body: Any, rules: Mapping[str, Any]) -> dict[str, Any]:
    from chirp.validation import validate

    data = body if isinstance(body, Mapping) else {}
    result = validate(data, dict(rules))
    if not result:
        raise ValidationError(_format_errors(result.errors), errors=result.errors)
    return {**dict(data), **result.data}


def _format_errors(errors: Mapping[str, list[str]]) -> str:
    """Render field errors as one message: ``name: This field is required``."""
    return "; ".join(
        f"{field}: {', '.join(messages)}"
        for field, messages in errors.items()
    )
