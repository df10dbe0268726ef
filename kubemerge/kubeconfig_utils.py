import base64
import copy
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import yaml

from common.variables import (
    BACKUP_SUFFIX,
    BACKUP_TIMESTAMP_FORMAT,
    CLUSTER_FILE_FIELDS,
    DEFAULT_KUBECONFIG_PATH,
    USER_FILE_FIELDS,
)

# Named collections and the key holding each entry's body
NAMED_COLLECTIONS = {
    "clusters": "cluster",
    "users": "user",
    "contexts": "context",
}


class KubeconfigError(Exception):
    pass

class UsageError(KubeconfigError):
    pass

class NotFoundError(KubeconfigError):
    pass

class ParseError(KubeconfigError):
    pass

class BackupError(KubeconfigError):
    pass

class MergeWriteError(KubeconfigError):
    pass

class RenameSkipped(KubeconfigError):
    """
    A context could not be renamed. Not fatal: the context is kept as-is.
    """

class CertificateCheckFailure(KubeconfigError):
    """
    A certificate could not be read or parsed. Not fatal: only reported.
    """


def resolve_kubeconfig_path(path: Path | str = None):
    """
    Get the default kubeconfig path from various sources.
    """

    if path:
        return Path(path).expanduser()

    # KUBECONFIG may hold a list of files, the first one is where kubectl writes
    if os.environ.get("KUBECONFIG"):
        first = os.environ["KUBECONFIG"].split(os.pathsep)[0]
        if first:
            return Path(first).expanduser()

    return DEFAULT_KUBECONFIG_PATH


############################################
# Reading and writing
############################################

def validate_kubeconfig(doc, source="kubeconfig"):
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ParseError(f"{source}: root must be a mapping")

    for collection, body_key in NAMED_COLLECTIONS.items():
        items = doc.get(collection)
        if items is None:
            doc[collection] = []
            continue
        if not isinstance(items, list):
            raise ParseError(f"{source}: '{collection}' must be a list")

        seen = set()
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"]:
                raise ParseError(f"{source}: every entry in '{collection}' needs a name")
            if item["name"] in seen:
                raise ParseError(f"{source}: duplicate name '{item['name']}' in '{collection}'")
            seen.add(item["name"])

            body = item.get(body_key)
            if body is None:
                item[body_key] = {}
            elif not isinstance(body, dict):
                raise ParseError(f"{source}: '{collection}.{item['name']}.{body_key}' must be a mapping")

    return doc

def load_kubeconfig(path: Path):
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"'{path}' is not a valid file")

    try:
        with open(path, encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ParseError(f"{path}: {e}") from e
    except OSError as e:
        raise NotFoundError(f"Cannot read '{path}': {e}") from e

    return validate_kubeconfig(doc, source=str(path))

def dump_kubeconfig(doc: dict):
    return yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)

def write_kubeconfig(path: Path, doc: dict):
    """
    Replace path with doc by writing a temporary file beside it and renaming it over the target.
    The target is left untouched when anything fails.
    """
    # Write through a symlinked kubeconfig instead of replacing the link
    path = Path(path).resolve()

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise MergeWriteError(f"Cannot create a temporary file next to '{path}': {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_kubeconfig(doc))
            f.flush()
            os.fsync(f.fileno())

        if path.exists():
            shutil.copymode(path, tmp_name)

        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise MergeWriteError(f"Cannot write '{path}': {e}") from e

def backup_kubeconfig(path: Path, now: datetime = None):
    """
    Copy path to <path>.bak.<timestamp> and return the backup path.
    """
    path = Path(path)
    timestamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)

    backup_path = path.with_name(f"{path.name}{BACKUP_SUFFIX}.{timestamp}")
    counter = 1
    while backup_path.exists():
        backup_path = path.with_name(f"{path.name}{BACKUP_SUFFIX}.{timestamp}.{counter}")
        counter += 1

    try:
        shutil.copy2(path, backup_path)
    except OSError as e:
        raise BackupError(f"Cannot back up '{path}' to '{backup_path}': {e}") from e

    return backup_path


############################################
# Queries
############################################

def get_named(doc: dict, collection: str, name: str):
    for item in doc.get(collection, []):
        if item["name"] == name:
            return item
    return None

def get_names(doc: dict, collection: str):
    return [item["name"] for item in doc.get(collection, [])]

def list_context_names(doc: dict):
    return get_names(doc, "contexts")

def get_context_field(doc: dict, context_name: str, field: str):
    context = get_named(doc, "contexts", context_name)
    if context is None:
        raise KeyError(f"Context '{context_name}' not found")
    return context["context"].get(field)

def get_referenced(doc: dict, field: str):
    """
    Names referenced by contexts through field ("cluster" or "user").
    """
    return {item["context"].get(field) for item in doc.get("contexts", [])} - {None, ""}


############################################
# Mutations
############################################

def rename_context(doc: dict, old_name: str, new_name: str):
    if old_name == new_name:
        return
    if get_named(doc, "contexts", new_name) is not None:
        raise ValueError(f"Context '{new_name}' already exists")

    context = get_named(doc, "contexts", old_name)
    if context is None:
        raise KeyError(f"Context '{old_name}' not found")
    context["name"] = new_name

    if doc.get("current-context") == old_name:
        doc["current-context"] = new_name

def set_context_user(doc: dict, context_name: str, new_user: str):
    """
    Point a context at a credential named new_user, creating it as a copy of the
    context's current credential. The old credential is removed once nothing references it.
    """
    context = get_named(doc, "contexts", context_name)
    if context is None:
        raise KeyError(f"Context '{context_name}' not found")

    old_user = context["context"].get("user")
    if old_user == new_user:
        return

    user = get_named(doc, "users", old_user)
    if user is None:
        raise KeyError(f"User '{old_user}' not found")

    if get_named(doc, "users", new_user) is None:
        doc["users"].append({"name": new_user, "user": copy.deepcopy(user["user"])})

    context["context"]["user"] = new_user
    prune_unreferenced(doc, users={old_user})

def delete_context(doc: dict, name: str):
    doc["contexts"] = [item for item in doc["contexts"] if item["name"] != name]
    if doc.get("current-context") == name:
        doc["current-context"] = ""

def prune_unreferenced(doc: dict, clusters=(), users=()):
    """
    Remove the given clusters and users unless a remaining context still references them.
    """
    unused_clusters = set(clusters) - get_referenced(doc, "cluster")
    unused_users = set(users) - get_referenced(doc, "user")

    doc["clusters"] = [item for item in doc["clusters"] if item["name"] not in unused_clusters]
    doc["users"] = [item for item in doc["users"] if item["name"] not in unused_users]

    return unused_clusters, unused_users


############################################
# Flatten and union
############################################

def _inline_files(body: dict, fields: dict, base_dir: Path, entry_name: str):
    for path_field, data_field in fields.items():
        file_path = body.pop(path_field, None)
        if not file_path:
            continue
        if body.get(data_field):
            # Inline data takes precedence over the file reference
            continue

        file_path = Path(file_path).expanduser()
        if not file_path.is_absolute():
            file_path = base_dir / file_path

        try:
            body[data_field] = base64.b64encode(file_path.read_bytes()).decode("ascii")
        except OSError as e:
            raise NotFoundError(f"Cannot read {path_field} of '{entry_name}': {e}") from e

def flatten_kubeconfig(doc: dict, base_dir: Path):
    """
    Return a copy of doc where every file reference is replaced by inline base64 data.
    Relative paths are resolved against base_dir, the directory of the file doc was read from.
    """
    flat = copy.deepcopy(doc)
    base_dir = Path(base_dir)

    for item in flat.get("clusters", []):
        _inline_files(item["cluster"], CLUSTER_FILE_FIELDS, base_dir, item["name"])
    for item in flat.get("users", []):
        _inline_files(item["user"], USER_FILE_FIELDS, base_dir, item["name"])

    return flat

def union_kubeconfigs(*docs: dict):
    """
    Merge documents the way kubectl does: the first document defining a name wins,
    and so does the first non-empty current-context.
    """
    merged = {}
    named = {collection: {} for collection in NAMED_COLLECTIONS}

    for doc in docs:
        for key, value in doc.items():
            if key in NAMED_COLLECTIONS:
                for item in value:
                    named[key].setdefault(item["name"], copy.deepcopy(item))
            elif key == "current-context":
                if value and not merged.get(key):
                    merged[key] = value
            elif key not in merged:
                merged[key] = copy.deepcopy(value)

    result = {
        "apiVersion": merged.pop("apiVersion", "v1"),
        "kind": merged.pop("kind", "Config"),
    }
    for collection in NAMED_COLLECTIONS:
        result[collection] = list(named[collection].values())
    result["current-context"] = merged.pop("current-context", "")
    result.update(merged)

    return result
