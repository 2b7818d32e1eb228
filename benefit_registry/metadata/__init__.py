"""Benefit metadata document format.

The registry stores only a URI; the JSON document behind it is a contract
between assigners and consuming applications. This package publishes that
contract as a JSON Schema and offers an advisory validator for consumers:
1. Schema — JSON Schema for the document structure
2. Validator — lists structural issues without rejecting anything
"""

METADATA_SCHEMA_VERSION = "1.0.0"
