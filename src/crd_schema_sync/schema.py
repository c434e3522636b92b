# ABOUTME: Converts Kubernetes OpenAPI v3 schemas into strict JSON Schema documents
# ABOUTME: Closes nested objects with additionalProperties=false and keeps x-kubernetes extensions

"""
OpenAPI v3 to JSON Schema conversion.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

A CRD version's ``schema.openAPIV3Schema`` is *almost* JSON Schema. This
module rewrites it node by node into a draft-07 document:

1. RECOGNIZED KEYWORDS are copied (type, description, enum, default, format,
   numeric/string/array bounds, $ref, example, examples, required).
2. SUBSCHEMAS are converted recursively (items, properties,
   additionalProperties, allOf/anyOf/oneOf, not).
3. KUBERNETES EXTENSIONS (x-kubernetes-*) are passed through untouched.
4. ANYTHING ELSE is dropped.

=============================================================================
STRICTNESS POLICY
=============================================================================

The API server prunes unknown fields of a custom resource, which silently
hides typos in manifests. To catch those typos at edit time, every NESTED
object that declares properties is closed:

    {"type": "object", "properties": {...}}
        -> {"type": "object", "properties": {...}, "additionalProperties": false}

The DOCUMENT ROOT is left open (apiVersion/kind/metadata are usually not
declared in the CRD schema). An explicit additionalProperties in the source,
anywhere, always wins. The rule applies inside allOf/anyOf/oneOf branches
as well.

=============================================================================
MALFORMED INPUT
=============================================================================

Conversion never raises. A node that is not a mapping becomes the
placeholder PLACEHOLDER_SCHEMA ({"type": "unknown"}) so the broken spot
stays visible in the output.
"""

from __future__ import annotations

from typing import Any

JSON_SCHEMA_DRAFT = "http://json-schema.org/draft-07/schema#"

# Stands in for any node that is not a schema object
PLACEHOLDER_SCHEMA: dict[str, Any] = {"type": "unknown"}

KUBERNETES_EXTENSIONS = (
    "x-kubernetes-validations",
    "x-kubernetes-preserve-unknown-fields",
    "x-kubernetes-pruning",
    "x-kubernetes-list-type",
    "x-kubernetes-list-map-keys",
    "x-kubernetes-int-or-string",
    "x-kubernetes-embedded-resource",
)

NUMERIC_KEYWORDS = (
    "minimum",
    "maximum",
    "exclusiveMinimum",
    "exclusiveMaximum",
    "minLength",
    "maxLength",
    "minItems",
    "maxItems",
)

COMPOSITION_KEYWORDS = ("allOf", "anyOf", "oneOf")


def _present(value: Any) -> bool:
    # Containers count even when empty; scalars must be truthy
    return isinstance(value, dict | list) or bool(value)


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid bound
    return isinstance(value, int | float) and not isinstance(value, bool)


def convert_schema(node: Any, root: bool = False) -> dict[str, Any]:
    """
    Convert one OpenAPI v3 schema node (and its subtree) to JSON Schema.

    Args:
        node: The OpenAPI v3 node
        root: Whether this node is the document root (never closed by default)

    Returns:
        A new JSON Schema node; the input is not modified.
    """
    if not isinstance(node, dict):
        return dict(PLACEHOLDER_SCHEMA)

    result: dict[str, Any] = {}

    if _present(node.get("type")):
        result["type"] = node["type"]
    if _present(node.get("description")):
        result["description"] = node["description"]
    if _present(node.get("enum")):
        result["enum"] = node["enum"]
    if "default" in node:
        result["default"] = node["default"]
    if isinstance(node.get("format"), str) and node["format"]:
        result["format"] = node["format"]

    for keyword in NUMERIC_KEYWORDS:
        if _is_number(node.get(keyword)):
            result[keyword] = node[keyword]

    if _present(node.get("pattern")):
        result["pattern"] = node["pattern"]

    if _present(node.get("items")):
        result["items"] = convert_schema(node["items"])

    properties = node.get("properties")
    if isinstance(properties, dict):
        result["properties"] = {key: convert_schema(value) for key, value in properties.items()}
        if "additionalProperties" not in node and not root:
            result["additionalProperties"] = False

    if "additionalProperties" in node:
        additional = node["additionalProperties"]
        if isinstance(additional, bool):
            result["additionalProperties"] = additional
        else:
            result["additionalProperties"] = convert_schema(additional)

    if isinstance(node.get("required"), list):
        result["required"] = [r for r in node["required"] if isinstance(r, str)]

    for keyword in COMPOSITION_KEYWORDS:
        if isinstance(node.get(keyword), list):
            result[keyword] = [convert_schema(member) for member in node[keyword]]

    if _present(node.get("not")):
        result["not"] = convert_schema(node["not"])

    if _present(node.get("$ref")):
        result["$ref"] = node["$ref"]

    for extension in KUBERNETES_EXTENSIONS:
        if extension in node:
            result[extension] = node[extension]

    if _present(node.get("example")):
        result["example"] = node["example"]
    if _present(node.get("examples")):
        result["examples"] = node["examples"]

    return result


def convert_openapi_to_json_schema(openapi: Any) -> dict[str, Any]:
    """
    Convert a CRD's openAPIV3Schema into a JSON Schema document.

    The result declares the draft-07 meta-schema and otherwise follows
    convert_schema(openapi, root=True).
    """
    return {"$schema": JSON_SCHEMA_DRAFT, **convert_schema(openapi, root=True)}


def generate_schema_filename(kind: str, version: str) -> str:
    """
    File name for a kind/version pair.

    Example: generate_schema_filename("KongConsumer", "v1") -> "kongconsumer_v1.json"
    """
    return f"{kind.lower()}_{version.lower()}.json"


def generate_schema_path(group: str, kind: str, version: str) -> str:
    """
    Relative path of a schema file.

    Example: "configuration.konghq.com/kongconsumer_v1.json"
    """
    return f"{group}/{generate_schema_filename(kind, version)}"
