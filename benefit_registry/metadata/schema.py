"""JSON Schema for the benefit metadata document.

Tools can export this and use it with any JSON Schema validator.
"""

from benefit_registry.metadata import METADATA_SCHEMA_VERSION

_IMAGE_URI = {"type": "string", "description": "Locator of an image for display."}

BENEFIT_METADATA_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": f"https://benefit-registry.dev/schema/benefit-metadata/v{METADATA_SCHEMA_VERSION}",
    "title": "Token Benefit Metadata",
    "description": (
        "Off-chain description of a perk (discount, access, reward) attached "
        "to a token or to a whole token collection."
    ),
    "type": "object",
    "required": ["title", "description", "type", "provider"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string", "minLength": 1},
        "imageURI": _IMAGE_URI,
        "type": {
            "type": "string",
            "description": "Kind of benefit, e.g. discount, access, reward.",
        },
        "category": {"type": "string"},
        # --- Provider ---
        "provider": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "description": {"type": "string"},
                "externalURL": {"type": "string"},
                "imageURI": _IMAGE_URI,
            },
        },
        # --- Redemption ---
        "redemption_details": {
            "type": "object",
            "properties": {
                "redemption_criteria": {"type": "string"},
                "redemption_role": {"type": "string"},
                "redemption_frequency": {"type": "string"},
                "redemption_period": {
                    "type": "object",
                    "properties": {
                        "startDate": {
                            "type": "string",
                            "pattern": r"^\d{4}-\d{2}-\d{2}",
                        },
                        "endDate": {
                            "type": "string",
                            "pattern": r"^\d{4}-\d{2}-\d{2}",
                        },
                    },
                },
            },
        },
        # --- Market value ---
        "market_value": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["currency", "amount"],
                "properties": {
                    "currency": {"type": "string", "minLength": 1},
                    "amount": {"type": "number"},
                },
            },
        },
        # --- Geofencing ---
        "geofencing": {
            "type": "object",
            "properties": {
                "mode": {"type": "string"},
                "coordinates": {
                    "type": "array",
                    "description": "Points or polygon vertices; shape depends on mode.",
                },
                "radius": {"type": "number"},
                "unit": {"type": "string"},
            },
        },
    },
}


def get_schema() -> dict:
    """Return the benefit metadata JSON Schema."""
    return BENEFIT_METADATA_SCHEMA
