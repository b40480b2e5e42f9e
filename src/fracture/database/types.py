"""Column type for stored profile export documents."""

import json

from typing import Any

from sqlalchemy import Text, TypeDecorator


class ProfileDocumentJSON(TypeDecorator[dict[str, Any]]):
    """
    A profile export document stored as compact JSON text.

    Only JSON objects are accepted. NaN and infinity are refused on write so a
    stored document always reloads; a row that does not decode to an object
    raises ValueError on load, which ProfileRepository turns into quarantine.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValueError(
                f"Profile document must be a JSON object, not {type(value).__name__}"
            )

        try:
            return json.dumps(
                value, ensure_ascii=False, allow_nan=False, separators=(",", ":")
            )
        except (TypeError, ValueError) as e:
            entity_id = value.get("entity_id", "?")
            raise ValueError(
                f"Cannot serialize profile document for '{entity_id}': {e}"
            ) from e

    def process_result_value(self, value: str | None, dialect: Any) -> Any:
        """
        Decode a stored document.

        Raises:
            ValueError: If the stored text is not a JSON object
        """
        if value is None:
            return None

        try:
            document = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Stored profile is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ValueError(
                f"Stored profile is a JSON {type(document).__name__}, not an object"
            )
        return document
