"""Source parser - recovers node metadata from a ``*.node.ts`` file.

Node modules describe themselves with an object literal assigned inside
their class (``description: INodeTypeDescription = {...}``). The parser
builds a TypeScript syntax tree, finds that literal and maps its keys onto
``ParsedMetadata``. It performs no I/O and keeps no state, so the same text
always yields the same result.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Any, Iterator

from tree_sitter_language_pack import get_parser

from .discovery import RemoteFile
from .literals import (
    ArrayValue,
    ObjectValue,
    Unsupported,
    extract_literal,
    node_text,
    property_key,
    to_python,
)

CLASS_NODE_TYPES = {"class_declaration", "abstract_class_declaration", "class"}
FIELD_NODE_TYPES = {"public_field_definition", "field_definition"}

DESCRIPTOR_NAME = "description"
BASE_DESCRIPTOR_NAME = "baseDescription"
NODE_VERSIONS_NAME = "nodeVersions"

DEFAULT_CATEGORY = "misc"
DEFAULT_VERSION = "1"
TRIGGER_FLAGS = ("trigger", "polling", "eventTrigger")


@dataclass
class ParsedMetadata:
    """Structured metadata for one node module."""

    style: str  # "declarative" | "programmatic"
    node_type: str
    display_name: str
    description: str | None
    category: str
    package_name: str
    version: str = DEFAULT_VERSION
    is_versioned: bool = False
    versions: list[str] = field(default_factory=list)
    is_ai_tool: bool = False
    is_trigger: bool = False
    is_webhook: bool = False
    properties: list[dict[str, Any]] = field(default_factory=list)
    credentials: list[dict[str, Any]] = field(default_factory=list)
    operations: list[dict[str, Any]] = field(default_factory=list)
    documentation: str | None = None
    unsupported_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _Descriptor:
    literal: ObjectValue
    node_versions: ObjectValue | None = None


@lru_cache(maxsize=1)
def _typescript_parser():
    return get_parser("typescript")


def build_node_type(name: str, package_name: str) -> str:
    """``("Slack", "n8n-nodes-base")`` -> ``"nodes-base.slack"``."""
    prefix = package_name.replace("@n8n/", "", 1).replace("n8n-", "", 1)
    return f"{prefix}.{name.lower()}"


def parse_remote_file(file: RemoteFile) -> ParsedMetadata | None:
    """Parse a fetched file; None when it carries no descriptor."""
    return parse_source(file.content, file.name, file.package_name)


def parse_source(content: str, name: str, package_name: str) -> ParsedMetadata | None:
    """Parse TypeScript source text into metadata, or None when no descriptor is found."""
    tree = _typescript_parser().parse(content.encode("utf-8"))
    try:
        descriptor = _find_descriptor(tree.root_node)
    except RecursionError:
        return None
    if descriptor is None:
        return None
    return _build_metadata(descriptor, name, package_name)


# --- Tree walking ---


def _named(node) -> list:
    return [c for c in node.named_children if c.type != "comment"]


def _walk(node) -> Iterator:
    """Pre-order walk over named nodes in document order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(_named(current)))


def _find_descriptor(root) -> _Descriptor | None:
    for node in _walk(root):
        if node.type in CLASS_NODE_TYPES:
            descriptor = _class_descriptor(node)
            if descriptor is not None:
                return descriptor
    return None


def _object_literal(node) -> ObjectValue | None:
    if node is None:
        return None
    value = extract_literal(node)
    return value if isinstance(value, ObjectValue) else None


def _class_descriptor(class_node) -> _Descriptor | None:
    """Descriptor literal of one class, by priority: field, this-assignment, baseDescription."""
    body = class_node.child_by_field_name("body")
    if body is None:
        return None

    field_literal = None
    for member in _named(body):
        if member.type not in FIELD_NODE_TYPES:
            continue
        name_node = member.child_by_field_name("name") or member.child_by_field_name("property")
        if name_node is not None and property_key(name_node) == DESCRIPTOR_NAME:
            field_literal = _object_literal(member.child_by_field_name("value"))
            if field_literal is not None:
                break

    assigned_literal = None
    base_literal = None
    node_versions = None
    for node in _walk(body):
        if node.type == "assignment_expression" and assigned_literal is None:
            if _is_this_member(node.child_by_field_name("left"), DESCRIPTOR_NAME):
                assigned_literal = _object_literal(node.child_by_field_name("right"))
        elif node.type == "variable_declarator":
            var_name = node.child_by_field_name("name")
            if var_name is None or var_name.type != "identifier":
                continue
            ident = node_text(var_name)
            if ident == BASE_DESCRIPTOR_NAME and base_literal is None:
                base_literal = _object_literal(node.child_by_field_name("value"))
            elif ident == NODE_VERSIONS_NAME and node_versions is None:
                node_versions = _object_literal(node.child_by_field_name("value"))

    literal = field_literal or assigned_literal or base_literal
    if literal is None:
        return None
    return _Descriptor(literal=literal, node_versions=node_versions)


def _is_this_member(node, name: str) -> bool:
    if node is None or node.type != "member_expression":
        return False
    obj = node.child_by_field_name("object")
    prop = node.child_by_field_name("property")
    return obj is not None and obj.type == "this" and prop is not None and node_text(prop) == name


# --- Mapping descriptor keys to metadata ---


def _build_metadata(descriptor: _Descriptor, name: str, package_name: str) -> ParsedMetadata:
    raw = descriptor.literal
    desc = to_python(raw)

    group = desc.get("group")
    if isinstance(group, str):
        group = [group]
    if not isinstance(group, list):
        group = []

    raw_properties = raw.get("properties")
    properties_raw = (
        [item for item in raw_properties.items if isinstance(item, ObjectValue)]
        if isinstance(raw_properties, ArrayValue)
        else []
    )
    property_dicts = [to_python(item) for item in properties_raw]

    version, versions, is_versioned = _versions(desc, descriptor.node_versions)

    return ParsedMetadata(
        style="declarative" if _is_declarative(raw, properties_raw) else "programmatic",
        node_type=build_node_type(name, package_name),
        display_name=_display_name(desc, name),
        description=desc.get("description") if isinstance(desc.get("description"), str) else None,
        category=_category(desc, group),
        package_name=package_name,
        version=version,
        is_versioned=is_versioned,
        versions=versions,
        is_ai_tool=desc.get("usableAsTool") is True,
        is_trigger=any(desc.get(flag) is True for flag in TRIGGER_FLAGS) or "trigger" in group,
        is_webhook=_has_webhooks(raw) or desc.get("webhook") is True,
        properties=[_normalize_property(p) for p in property_dicts],
        credentials=_credentials(desc.get("credentials")),
        operations=_operations(property_dicts),
        documentation=_documentation(desc),
        unsupported_fields=[key for key, value in raw.entries if isinstance(value, Unsupported)],
    )


def _display_name(desc: dict[str, Any], name: str) -> str:
    display_name = desc.get("displayName")
    if isinstance(display_name, str) and display_name:
        return display_name
    defaults = desc.get("defaults")
    if isinstance(defaults, dict) and isinstance(defaults.get("name"), str) and defaults["name"]:
        return defaults["name"]
    return name


def _category(desc: dict[str, Any], group: list) -> str:
    if group and isinstance(group[0], str) and group[0]:
        return group[0]
    category = desc.get("category")
    if isinstance(category, str) and category:
        return category
    categories = desc.get("categories")
    if isinstance(categories, list) and categories and isinstance(categories[0], str):
        return categories[0]
    return DEFAULT_CATEGORY


def _is_declarative(raw: ObjectValue, properties: list[ObjectValue]) -> bool:
    if raw.get("routing") is not None or raw.get("requestDefaults") is not None:
        return True
    return any(prop.get("routing") is not None for prop in properties)


def _has_webhooks(raw: ObjectValue) -> bool:
    webhooks = raw.get("webhooks")
    if isinstance(webhooks, ArrayValue):
        return len(webhooks.items) > 0
    # declared through a constant or helper call
    return isinstance(webhooks, Unsupported)


def _format_version(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _version_key(version: str) -> tuple[int, float, str]:
    try:
        return (1, float(version), version)
    except ValueError:
        return (0, 0.0, version)


def _versions(desc: dict[str, Any], node_versions: ObjectValue | None) -> tuple[str, list[str], bool]:
    """Return (current version, all declared versions, is_versioned)."""
    declared: list[str] = []
    raw_version = desc.get("version")
    if isinstance(raw_version, list):
        declared = [v for v in (_format_version(x) for x in raw_version) if v]
    elif node_versions is not None:
        declared = [v for v in (_format_version(k) for k in node_versions.keys()) if v]
    declared = sorted(set(declared), key=_version_key)

    default = _format_version(desc.get("defaultVersion"))
    if default:
        return default, sorted(set(declared) | {default}, key=_version_key), True
    if declared:
        return declared[-1], declared, True
    single = _format_version(raw_version)
    if single:
        return single, [single], False
    return DEFAULT_VERSION, [DEFAULT_VERSION], False


def _normalize_property(prop: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {
        "displayName": prop.get("displayName") or prop.get("name") or "Unknown",
        "name": prop.get("name") or "unknown",
        "type": prop.get("type") or "string",
    }
    if "default" in prop:
        normalized["default"] = prop["default"]
    normalized["required"] = prop.get("required") is True
    normalized["description"] = prop.get("description") or ""
    for key in ("options", "displayOptions"):
        if key in prop:
            normalized[key] = prop[key]
    return normalized


def _credentials(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    credentials = []
    for cred in value:
        if isinstance(cred, str):
            credentials.append({"name": cred, "required": True})
        elif isinstance(cred, dict) and isinstance(cred.get("name"), str):
            entry: dict[str, Any] = {"name": cred["name"], "required": cred.get("required") is True}
            if isinstance(cred.get("displayOptions"), dict):
                entry["displayOptions"] = cred["displayOptions"]
            credentials.append(entry)
    return credentials


def _operations(properties: list[dict[str, Any]]) -> list[dict[str, Any]]:
    operations = []
    for prop in properties:
        if prop.get("name") != "operation" or not isinstance(prop.get("options"), list):
            continue
        show = prop.get("displayOptions", {})
        show = show.get("show", {}) if isinstance(show, dict) else {}
        resources = show.get("resource", []) if isinstance(show, dict) else []
        if not isinstance(resources, list):
            resources = [resources]
        for option in prop["options"]:
            if not isinstance(option, dict):
                continue
            operations.append(
                {
                    "name": option.get("name", ""),
                    "value": option.get("value"),
                    "description": option.get("description", ""),
                    "action": option.get("action", ""),
                    "resources": [r for r in resources if isinstance(r, str)],
                }
            )
    return operations


def _documentation(desc: dict[str, Any]) -> str | None:
    url = desc.get("documentationUrl")
    if isinstance(url, str) and url:
        return url
    codex = desc.get("codex")
    resources = codex.get("resources") if isinstance(codex, dict) else None
    docs = resources.get("primaryDocumentation") if isinstance(resources, dict) else None
    if isinstance(docs, list):
        for doc in docs:
            if isinstance(doc, dict) and isinstance(doc.get("url"), str):
                return doc["url"]
    return None


__all__ = ["ParsedMetadata", "build_node_type", "parse_remote_file", "parse_source"]
