"""
Engine constants.

These values are intentionally not configurable via environment variables
unless mirrored in config/settings.py.
"""

# FHIR
DEFAULT_FHIR_VERSION = "r4"
FHIR_JSON_CONTENT_TYPE = "application/fhir+json"

# HTTP
OK_CODES = (200, 201)
UNAUTHORIZED_CODES = (401,)
REQUEST_TIMEOUT_SECONDS = 30.0
BODY_EXCERPT_CHARS = 200

# Search
MAX_SEARCH_PAGES = 20
MAX_REFERENCE_CHECKS = 50
PROVENANCE_REVINCLUDE = "Provenance:target"

# Links shown alongside test metadata
CAPABILITY_STATEMENT_LINK = "https://www.hl7.org/fhir/us/core/CapabilityStatement-us-core-server.html"
BEHAVIOR_LINK = CAPABILITY_STATEMENT_LINK + "#behavior"
REVINCLUDE_LINK = "https://www.hl7.org/fhir/search.html#revinclude"
MUST_SUPPORT_LINK = "http://www.hl7.org/fhir/us/core/general-guidance.html#must-support"
REFERENCES_LINK = "http://hl7.org/fhir/references.html"
