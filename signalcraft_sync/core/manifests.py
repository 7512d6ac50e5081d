"""Manifest files: YAML documents declaring the desired SignalCraft objects.

Each document is either a single resource::

    kind: Team
    metadata:
      namespace: platform
      name: sre
    spec:
      members: [u1, u2]

or a ``resources:`` list of such entries.
"""

from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml
from pydantic import ValidationError

from signalcraft_sync.clients.exceptions import ConfigurationError, SerializationError
from signalcraft_sync.core.models import ResourceIdentity
from signalcraft_sync.core.payload import validate_structured

Manifest = Tuple[ResourceIdentity, Dict[str, Any]]


def parse_manifest_entry(entry: Any, source: str = "<manifest>") -> Manifest:
    """Turn one manifest entry into an identity and a desired spec.

    Raises:
        ConfigurationError: If the entry is malformed
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{source}: each resource must be a mapping")

    metadata = entry.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ConfigurationError(f"{source}: metadata must be a mapping")

    try:
        identity = ResourceIdentity(
            kind=entry.get("kind") or "",
            scope=metadata.get("namespace") or metadata.get("scope") or "default",
            name=metadata.get("name") or "",
        )
    except ValidationError as e:
        raise ConfigurationError(f"{source}: invalid resource identity: {e}") from e

    spec = entry.get("spec") or {}
    if not isinstance(spec, dict):
        raise ConfigurationError(f"{source}: spec of {identity.key} must be a mapping")
    try:
        spec = validate_structured(spec, "spec")
    except SerializationError as e:
        raise ConfigurationError(f"{source}: {identity.key}: {e}") from e

    return identity, spec


def load_manifests(path: Path) -> List[Manifest]:
    """Load every resource declared in a YAML manifest file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or declares
            the same identity twice
    """
    try:
        documents = list(yaml.safe_load_all(Path(path).read_text(encoding="utf-8")))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    entries: List[Any] = []
    for document in documents:
        if document is None:
            continue
        if isinstance(document, dict) and "resources" in document:
            if not isinstance(document["resources"], list):
                raise ConfigurationError(f"{path}: resources must be a list")
            entries.extend(document["resources"])
        else:
            entries.append(document)

    manifests: List[Manifest] = []
    seen = set()
    for entry in entries:
        identity, spec = parse_manifest_entry(entry, source=str(path))
        if identity.key in seen:
            raise ConfigurationError(f"{path}: {identity.key} is declared more than once")
        seen.add(identity.key)
        manifests.append((identity, spec))
    return manifests
